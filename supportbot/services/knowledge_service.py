import re
from collections import defaultdict

from supportbot.logging_config import get_logger

logger = get_logger("knowledge_service")

MIN_SENTENCE_LENGTH = 5

_SENTENCE_SPLIT = re.compile(r"[.!?\n]")
_NUMBER_WITH_UNIT = re.compile(r"(\d+(?:k|,\d{3})*)\s*([a-z]+)", re.IGNORECASE)


def parse_quantity(raw: str) -> int:
    """'5k' -> 5000, '1,500' -> 1500."""
    value = int(raw.lower().replace("k", "").replace(",", ""))
    if "k" in raw.lower():
        value *= 1000
    return value


def extract_numeric_facts(knowledge_base: str) -> dict[str, set[int]]:
    """Map each unit word to the set of numbers the text associates with it."""
    facts: dict[str, set[int]] = defaultdict(set)
    for sentence in _SENTENCE_SPLIT.split(knowledge_base.lower()):
        sentence = sentence.strip()
        if len(sentence) < MIN_SENTENCE_LENGTH:
            continue
        for number, unit in _NUMBER_WITH_UNIT.findall(sentence):
            facts[unit].add(parse_quantity(number))
    return facts


def find_contradictions(knowledge_base: str) -> dict[str, list[int]]:
    """Units that appear with more than one distinct value."""
    if not knowledge_base or not knowledge_base.strip():
        return {}
    return {
        unit: sorted(values)
        for unit, values in extract_numeric_facts(knowledge_base).items()
        if len(values) > 1
    }


def has_contradictions(knowledge_base: str, tenant_id: str = "") -> bool:
    conflicts = find_contradictions(knowledge_base)
    if conflicts:
        logger.warning(
            "Knowledge base contradiction detected",
            extra={"context": {"tenant_id": tenant_id, "conflicts": conflicts}},
        )
    return bool(conflicts)
