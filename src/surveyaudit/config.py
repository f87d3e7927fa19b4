"""
Validation configuration.

All heuristics that were tuned against observed surveys (special codes,
identifier column names, naming conventions, thresholds) live here so a
project can override them from a YAML file instead of editing code.

Example YAML:

    special_codes: [0, 97, 98, 99, 997, 998, 999, 9999, 96]
    refusal_codes: [99, 999, 9999]
    id_columns: [id, RespondentID]
    garbled_ratio_threshold: 0.2
"""

import warnings
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

import yaml


class SurveyAuditError(Exception):
    """Base class for errors surfaced to callers."""
    pass


class ConfigError(SurveyAuditError):
    """Raised when a configuration file cannot be used."""
    pass


# Platform "other (specify)" code accepted everywhere.
OTHER_CODE = 96

DEFAULT_SPECIAL_CODES = frozenset({0, 97, 98, 99, 997, 998, 999, 9999, OTHER_CODE})
DEFAULT_REFUSAL_CODES = frozenset({99, 999, 9999})

DEFAULT_ID_COLUMNS = (
    "id", "ID", "Id", "RespondentID", "respondent_id", "Respondent_ID",
    "RESPID", "resp_id", "_id",
)

# Administrative / platform columns: presence is checked, content is not.
DEFAULT_ADMIN_NAME_PATTERNS = (
    r"^_",
    r"^(start|end|today|deviceid|subscriberid|simserial|phonenumber|username|audit)$",
    r"(^|_)(date|time|timestamp|duration|starttime|endtime|submit\w*)$",
    r"^(id|uuid|instanceid|interview_?id|resp(ondent)?_?id|record|weight|wt)$",
    r"(spont|unaided|first_?mention|tom)\d*$",
)

# Free-text companions: "other, specify" and verbatim fields.
DEFAULT_OPEN_TEXT_NAME_PATTERNS = (
    r"[_.](oth|other|txt|text|open|os|verb|verbatim)\d*$",
    r"(spec|specify)\d*$",
)


@dataclass(frozen=True)
class ValidationConfig:
    """
    Tunable heuristics for one validation run.

    Properties:
        special_codes: Refuse/don't-know/not-selected/other codes always accepted
        refusal_codes: Codes tolerated in a target whose routing condition fails
        id_columns: Candidate respondent-identifier columns, in priority order
        admin_name_patterns: Regexes for administrative variables
        open_text_name_patterns: Regexes for free-text companion variables
        garbled_ratio_threshold: Minimum share of letter-run characters
        garbled_min_length: Minimum non-whitespace length before judging text
        top_values: Number of values kept in a column frequency table
        max_listed_missing_columns: Missing columns reported individually
        max_listed_duplicate_ids: Duplicate identifiers named in the warning
        dense_run_min_length: Contiguous run length that triggers range filling
        scale_min_width / scale_max_width: Accepted inferred scale widths
    """

    special_codes: FrozenSet[int] = DEFAULT_SPECIAL_CODES
    refusal_codes: FrozenSet[int] = DEFAULT_REFUSAL_CODES
    id_columns: Tuple[str, ...] = DEFAULT_ID_COLUMNS
    admin_name_patterns: Tuple[str, ...] = DEFAULT_ADMIN_NAME_PATTERNS
    open_text_name_patterns: Tuple[str, ...] = DEFAULT_OPEN_TEXT_NAME_PATTERNS
    garbled_ratio_threshold: float = 0.20
    garbled_min_length: int = 7
    top_values: int = 10
    max_listed_missing_columns: int = 10
    max_listed_duplicate_ids: int = 20
    dense_run_min_length: int = 3
    scale_min_width: int = 2
    scale_max_width: int = 20

    def is_special(self, value: float) -> bool:
        return value in self.special_codes

    def is_refusal(self, value: float) -> bool:
        return value in self.refusal_codes


_SET_FIELDS = {"special_codes", "refusal_codes"}
_TUPLE_FIELDS = {"id_columns", "admin_name_patterns", "open_text_name_patterns"}


def config_from_dict(data: Dict[str, Any], base: Optional[ValidationConfig] = None) -> ValidationConfig:
    """
    Build a config from a plain mapping, starting from `base` (or defaults).

    Unknown keys are ignored with a UserWarning.

    Raises:
        ConfigError: If a value has the wrong shape
    """
    base = base or ValidationConfig()
    known = {f.name for f in fields(ValidationConfig)}
    overrides: Dict[str, Any] = {}

    for key, value in (data or {}).items():
        if key not in known:
            warnings.warn(f"Unknown configuration key ignored: {key}", UserWarning)
            continue
        try:
            if key in _SET_FIELDS:
                overrides[key] = frozenset(int(v) for v in value)
            elif key in _TUPLE_FIELDS:
                if isinstance(value, str):
                    raise TypeError("expected a list")
                overrides[key] = tuple(str(v) for v in value)
            elif key == "garbled_ratio_threshold":
                overrides[key] = float(value)
            else:
                overrides[key] = int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for {key!r}: {value!r} ({e})")

    return replace(base, **overrides)


def load_config(path: Union[str, Path]) -> ValidationConfig:
    """
    Load a ValidationConfig from a YAML file.

    Raises:
        ConfigError: If the file is unreadable or not a YAML mapping
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}")

    if data is None:
        return ValidationConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return config_from_dict(data)


__all__ = [
    "ValidationConfig",
    "SurveyAuditError",
    "ConfigError",
    "config_from_dict",
    "load_config",
    "OTHER_CODE",
]
