"""
Report XML Macros

Text substitution of named macro references inside serialized report
schemas. References look like ``$NAME`` by default; the prefix and suffix
can be changed through the reserved ``macroPrefix`` and ``macroSuffix``
entries of the macro table.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

import logging
import re
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

MACRO_PREFIX_KEY = "macroPrefix"
MACRO_SUFFIX_KEY = "macroSuffix"
RESERVED_KEYS = (MACRO_PREFIX_KEY, MACRO_SUFFIX_KEY)

DEFAULT_PREFIX = "$"
DEFAULT_SUFFIX = ""


def expand_macros(
    text: str,
    macros: Mapping[str, Optional[str]],
    prefix: str = DEFAULT_PREFIX,
    suffix: str = DEFAULT_SUFFIX
) -> str:
    """
    Replace every macro reference in text with its value.

    The text is scanned once. Replacement values are not rescanned, so
    self-referential or mutually referential macros cannot loop. Where macro
    names overlap the longest name wins. Unknown references are left as they
    are.

    Args:
        text: Input text, usually a report schema XML definition
        macros: Macro name -> replacement text; None expands to ""
        prefix: Text that opens a macro reference
        suffix: Text that closes a macro reference

    Returns:
        The expanded text
    """
    names = [name for name in macros if name and name not in RESERVED_KEYS]
    if not text or not names:
        return text

    # Longest first so that $AB is preferred over $A
    names.sort(key=len, reverse=True)
    alternation = "|".join(re.escape(name) for name in names)
    pattern = re.compile(f"{re.escape(prefix)}({alternation}){re.escape(suffix)}")

    def _replace(match: "re.Match[str]") -> str:
        value = macros[match.group(1)]
        return "" if value is None else str(value)

    expanded, count = pattern.subn(_replace, text)
    logger.debug(f"Expanded {count} macro reference(s) using {len(names)} macro(s)")
    return expanded


def macro_syntax(macros: Mapping[str, Optional[str]],
                 default_prefix: str = DEFAULT_PREFIX,
                 default_suffix: str = DEFAULT_SUFFIX):
    """Return the (prefix, suffix) pair a macro table asks for"""
    prefix = macros.get(MACRO_PREFIX_KEY) or default_prefix
    suffix = macros.get(MACRO_SUFFIX_KEY)
    if suffix is None:
        suffix = default_suffix
    return prefix, suffix


class MacroExpander:
    """
    Applies the saved macro table to text.

    The table is loaded from the store on every call, so a save is visible
    to the very next expansion.
    """

    def __init__(self, store, default_prefix: str = DEFAULT_PREFIX, default_suffix: str = DEFAULT_SUFFIX):
        self.store = store
        self.default_prefix = default_prefix
        self.default_suffix = default_suffix

    def current_macros(self) -> Dict[str, str]:
        return dict(self.store.load())

    def expand(self, text: str) -> str:
        macros = self.current_macros()
        prefix, suffix = macro_syntax(macros, self.default_prefix, self.default_suffix)
        return expand_macros(text, macros, prefix, suffix)
