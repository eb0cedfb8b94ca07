"""Style code parsing and result filename derivation"""
import re
from typing import Tuple

from config import STYLE_CODE_PATTERN
from services.errors import StyleCodeError

_STYLE_CODE_RE = re.compile(STYLE_CODE_PATTERN)


def is_valid_style_code(code: str) -> bool:
    return bool(code) and _STYLE_CODE_RE.fullmatch(code) is not None


def parse_style_code(code: str) -> Tuple[str, str]:
    """Split a style code into (style, color), both upper-cased.

    The last character is the color, everything before it is the style.
    """
    if not is_valid_style_code(code):
        raise StyleCodeError(f"Invalid style code '{code}': use 2-20 letters or digits.")
    upper = code.upper()
    return upper[:-1], upper[-1]


def build_filename(code: str, sequence: int) -> str:
    style, color = parse_style_code(code)
    return f"{style}-{color}-{sequence}.jpg"
