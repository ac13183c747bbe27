"""
Report Engine

Evaluates declarative report schemas against a subject population and
renders the results through pluggable renderers.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

__version__ = "0.1.0"
