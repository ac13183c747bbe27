"""
Report Schema Materializer

Turns serialized report schema XML into a live ReportSchema (after macro
expansion) and back. Parsing is strict: anything that does not match the
expected structure raises MaterializationError.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

import logging
import xml.etree.ElementTree as ET
from typing import Dict, List, Mapping, Optional, Type

from .context import Cohort
from .datasets import DATA_SET_TYPES
from .exceptions import MaterializationError
from .macros import DEFAULT_PREFIX, DEFAULT_SUFFIX, expand_macros
from .schema import DataSetDefinition, Parameter, ParameterType, ReportSchema, ReportSchemaXml

logger = logging.getLogger(__name__)

ROOT_TAG = "reportSchema"


def materialize(
    schema_xml: ReportSchemaXml,
    macros: Optional[Mapping[str, Optional[str]]] = None,
    prefix: str = DEFAULT_PREFIX,
    suffix: str = DEFAULT_SUFFIX,
    data_set_types: Optional[Mapping[str, Type[DataSetDefinition]]] = None
) -> ReportSchema:
    """
    Expand macros in a stored schema definition and parse it.

    Args:
        schema_xml: The stored serialized schema
        macros: Macro table to expand with; read only
        prefix: Macro reference prefix
        suffix: Macro reference suffix
        data_set_types: Data-set type id -> definition class

    Returns:
        The materialized ReportSchema

    Raises:
        MaterializationError: If the expanded text is not a valid schema
    """
    text = expand_macros(schema_xml.xml, macros or {}, prefix, suffix)
    schema = parse_schema(text, data_set_types)
    if schema.report_schema_id is None:
        schema.report_schema_id = schema_xml.report_schema_id
    return schema


def parse_schema(text: str,
                 data_set_types: Optional[Mapping[str, Type[DataSetDefinition]]] = None) -> ReportSchema:
    """Parse schema XML text into a ReportSchema"""
    types = DATA_SET_TYPES if data_set_types is None else data_set_types

    if not text or not text.strip():
        raise MaterializationError("Report schema XML is empty")
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise MaterializationError(f"Report schema XML is not well-formed: {e}") from e

    if root.tag != ROOT_TAG:
        raise MaterializationError(f"Expected <{ROOT_TAG}> root element, found <{root.tag}>")

    name = (root.findtext("name") or "").strip()
    if not name:
        raise MaterializationError("Report schema has no <name>")

    schema_id = None
    if root.get("id"):
        try:
            schema_id = int(root.get("id"))
        except ValueError as e:
            raise MaterializationError(f"Report schema id is not an integer: {root.get('id')!r}") from e

    parameters = _parse_parameters(root.find("parameters"))
    cohort = _parse_filter(root.find("filter"))
    definitions = _parse_data_sets(root.find("dataSets"), types)

    try:
        schema = ReportSchema(
            name=name,
            description=(root.findtext("description") or "").strip(),
            data_set_definitions=definitions,
            parameters=parameters,
            filter=cohort,
            report_schema_id=schema_id,
        )
    except ValueError as e:
        raise MaterializationError(str(e)) from e

    logger.debug(f"Materialized report schema '{name}' with {len(definitions)} data set(s)")
    return schema


def _parse_parameters(element: Optional[ET.Element]) -> List[Parameter]:
    if element is None:
        return []

    parameters: List[Parameter] = []
    seen = set()
    for child in element:
        if child.tag != "parameter":
            raise MaterializationError(f"Unexpected <{child.tag}> inside <parameters>")
        name = child.get("name")
        if not name:
            raise MaterializationError("Parameter declaration without a name")
        if name in seen:
            raise MaterializationError(f"Parameter '{name}' declared more than once")
        seen.add(name)

        type_text = child.get("type", ParameterType.STRING.value)
        try:
            param_type = ParameterType(type_text)
        except ValueError as e:
            raise MaterializationError(f"Parameter '{name}' has unknown type '{type_text}'") from e

        required_text = child.get("required", "true").strip().lower()
        if required_text not in ("true", "false"):
            raise MaterializationError(f"Parameter '{name}' has invalid required flag '{required_text}'")

        parameter = Parameter(
            name=name,
            label=child.get("label", ""),
            type=param_type,
            required=required_text == "true",
        )
        default_text = child.get("default")
        if default_text is not None:
            try:
                parameter = Parameter(
                    name=parameter.name,
                    label=parameter.label,
                    type=parameter.type,
                    required=parameter.required,
                    default=parameter.coerce(default_text),
                )
            except ValueError as e:
                raise MaterializationError(f"Parameter '{name}' has invalid default: {e}") from e
        parameters.append(parameter)
    return parameters


def _parse_filter(element: Optional[ET.Element]) -> Optional[Cohort]:
    if element is None:
        return None
    members = []
    for child in element:
        if child.tag != "subject" or not child.get("id"):
            raise MaterializationError("<filter> may only contain <subject id=\"...\"/> elements")
        members.append(child.get("id"))
    return Cohort(members, name=element.get("name", ""))


def _parse_data_sets(element: Optional[ET.Element],
                     types: Mapping[str, Type[DataSetDefinition]]) -> List[DataSetDefinition]:
    if element is None:
        raise MaterializationError("Report schema has no <dataSets>")

    definitions: List[DataSetDefinition] = []
    for child in element:
        if child.tag != "dataSet":
            raise MaterializationError(f"Unexpected <{child.tag}> inside <dataSets>")
        name = child.get("name")
        if not name:
            raise MaterializationError("Data set without a name")
        type_id = child.get("type")
        definition_class = types.get(type_id)
        if definition_class is None:
            raise MaterializationError(f"Data set '{name}' has unknown type '{type_id}'")
        try:
            definitions.append(definition_class.from_xml(child))
        except ValueError as e:
            raise MaterializationError(f"Data set '{name}' is malformed: {e}") from e
    return definitions


def serialize(schema: ReportSchema) -> str:
    """Serialize a ReportSchema to XML text that parse_schema() reads back"""
    root = ET.Element(ROOT_TAG)
    if schema.report_schema_id is not None:
        root.set("id", str(schema.report_schema_id))
    ET.SubElement(root, "name").text = schema.name
    if schema.description:
        ET.SubElement(root, "description").text = schema.description

    if schema.parameters:
        params_el = ET.SubElement(root, "parameters")
        for p in schema.parameters:
            attrs: Dict[str, str] = {
                "name": p.name,
                "type": p.type.value,
                "required": "true" if p.required else "false",
            }
            if p.label:
                attrs["label"] = p.label
            if p.default is not None:
                attrs["default"] = p.default.isoformat() if hasattr(p.default, "isoformat") else str(p.default)
            ET.SubElement(params_el, "parameter", attrs)

    if schema.filter is not None:
        filter_el = ET.SubElement(root, "filter")
        if schema.filter.name:
            filter_el.set("name", schema.filter.name)
        for subject_id in schema.filter:
            ET.SubElement(filter_el, "subject", id=str(subject_id))

    data_sets_el = ET.SubElement(root, "dataSets")
    for definition in schema.data_set_definitions:
        data_set_el = ET.SubElement(data_sets_el, "dataSet", name=definition.name, type=definition.type_id)
        definition.to_xml(data_set_el)

    return ET.tostring(root, encoding="unicode")
