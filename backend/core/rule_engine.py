# backend/core/rule_engine.py
"""
Segment rule evaluation.

A rule group is ``{"and": [rule, ...], "or": [rule, ...]}`` and a rule is
``{"field": ..., "op": ..., "value": ...}``. Evaluation is pure and never
raises: unknown fields or operators make the rule false.
"""
import logging
import operator
import re
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

from core.time_utils import as_utc_date, utcnow

logger = logging.getLogger(__name__)

NUMERIC_FIELDS = {"spend", "visits"}
DATE_FIELDS = {"last_active"}
STRING_FIELDS = {"email", "name"}
SUPPORTED_FIELDS = NUMERIC_FIELDS | DATE_FIELDS | STRING_FIELDS

COMPARISON_OPS = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "=": operator.eq,
    "!=": operator.ne,
}
SUBSTRING_OPS = {"contains", "not_contains"}
SUPPORTED_OPS = set(COMPARISON_OPS) | SUBSTRING_OPS


def _read(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return 0.0
    return 0.0


def _group_rules(rule_group: Any, clause: str) -> List[Any]:
    if rule_group is None:
        return []
    if isinstance(rule_group, dict):
        rules = rule_group.get(clause)
        if rules is None:
            rules = rule_group.get(f"{clause}_")
    else:
        rules = getattr(rule_group, f"{clause}_", None)
    return list(rules or [])


def evaluate_rule(customer: Any, rule: Any) -> bool:
    field = _read(rule, "field")
    op = _read(rule, "op")
    expected = _read(rule, "value")

    if field not in SUPPORTED_FIELDS or op not in SUPPORTED_OPS:
        return False

    actual = _read(customer, field)

    if field in NUMERIC_FIELDS:
        if op in SUBSTRING_OPS:
            return False
        return COMPARISON_OPS[op](_to_number(actual), _to_number(expected))

    if field in DATE_FIELDS:
        if op in SUBSTRING_OPS:
            return False
        actual_day = as_utc_date(actual)
        expected_day = as_utc_date(expected)
        if actual_day is None or expected_day is None:
            return False
        return COMPARISON_OPS[op](actual_day, expected_day)

    text = "" if actual is None else str(actual)
    needle = "" if expected is None else str(expected)
    if op == "contains":
        return needle in text
    if op == "not_contains":
        return needle not in text
    return COMPARISON_OPS[op](text, needle)


def evaluate(customer: Any, rule_group: Any) -> bool:
    """True when the customer satisfies every AND rule and, if present, any OR rule"""
    and_rules = _group_rules(rule_group, "and")
    or_rules = _group_rules(rule_group, "or")

    if not all(evaluate_rule(customer, rule) for rule in and_rules):
        return False
    if or_rules and not any(evaluate_rule(customer, rule) for rule in or_rules):
        return False
    return True


def validate_rule_group(rule_group: Any) -> List[str]:
    """Return human-readable problems with a rule group; empty list means it is usable"""
    problems = []
    for clause in ("and", "or"):
        for index, rule in enumerate(_group_rules(rule_group, clause)):
            problems.extend(_rule_problems(rule, f"{clause}[{index}]"))
    return problems


def _rule_problems(rule: Any, location: str) -> Iterable[str]:
    field = _read(rule, "field")
    op = _read(rule, "op")
    value = _read(rule, "value")

    if field not in SUPPORTED_FIELDS:
        yield f"{location}: unsupported field '{field}'"
        return
    if op not in SUPPORTED_OPS:
        yield f"{location}: unsupported operator '{op}'"
        return
    if value is None:
        yield f"{location}: value is required"
        return

    if field in NUMERIC_FIELDS or field in DATE_FIELDS:
        if op in SUBSTRING_OPS:
            yield f"{location}: operator '{op}' only applies to text fields"
            return
    if field in DATE_FIELDS and as_utc_date(value) is None:
        yield f"{location}: '{value}' is not a valid date"


# ============================================
# PLAIN-TEXT RULES
# ============================================

INACTIVE_AFTER_DAYS = 90
RECENT_WITHIN_DAYS = 30
HIGH_VALUE_SPEND = 1000
FREQUENT_VISITS = 10


def _rule(field: str, op: str, value: Any) -> Dict[str, Any]:
    return {"field": field, "op": op, "value": value}


def parse_rules(text: str, today: Optional[date] = None) -> Dict[str, List[Dict[str, Any]]]:
    """Turn a short description ("spend more than 500", "inactive") into a rule group.

    Keyword matching only: the first phrase that matches wins and the first
    number in the text fills its threshold. Text that matches nothing yields
    a rule every customer satisfies.
    """
    text = (text or "").lower()
    today = today or utcnow().date()
    number_match = re.search(r"(\d+)", text)
    number = int(number_match.group(1)) if number_match else None

    if "spend" in text and "more than" in text:
        rule = _rule("spend", ">", number or 200)
    elif "spend" in text and "less than" in text:
        rule = _rule("spend", "<", number or 100)
    elif "spend" in text and "at least" in text:
        rule = _rule("spend", ">=", number or 500)
    elif "high value" in text or "high-value" in text:
        rule = _rule("spend", ">=", HIGH_VALUE_SPEND)
    elif "inactive" in text or "not active" in text:
        rule = _rule("last_active", "<", (today - timedelta(days=INACTIVE_AFTER_DAYS)).isoformat())
    elif "frequent" in text or "regular" in text:
        rule = _rule("visits", ">=", FREQUENT_VISITS)
    elif "new" in text or "recent" in text:
        rule = _rule("last_active", ">=", (today - timedelta(days=RECENT_WITHIN_DAYS)).isoformat())
    elif "visits" in text and "more than" in text:
        rule = _rule("visits", ">", number or 5)
    else:
        rule = _rule("spend", ">=", 0)

    logger.debug(f"Parsed '{text}' into {rule}")
    return {"and": [rule], "or": []}
