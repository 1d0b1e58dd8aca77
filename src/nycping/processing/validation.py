"""
Partition raw scraper records into valid models and reportable errors.
Malformed records never abort an ingestion run.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, List, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class ScraperError:
    source: str
    payload: Any
    error: str
    timestamp: datetime


@dataclass
class ValidationResult(Generic[ModelT]):
    valid: List[ModelT] = field(default_factory=list)
    errors: List[ScraperError] = field(default_factory=list)


def _first_error(error: ValidationError) -> str:
    details = error.errors()
    if not details:
        return str(error)
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "record"
    return f"{location}: {first.get('msg', 'invalid')}"


def validate_and_filter_records(
    source: str,
    records: Sequence[Any],
    schema: Type[ModelT],
) -> ValidationResult[ModelT]:
    result: ValidationResult[ModelT] = ValidationResult()
    now = datetime.now(timezone.utc)

    for record in records:
        try:
            result.valid.append(schema.model_validate(record))
        except ValidationError as e:
            result.errors.append(ScraperError(source, record, _first_error(e), now))

    if result.errors:
        logger.warning(
            f"[{source}] {len(result.errors)}/{len(records)} records failed validation",
            extra={"source": source},
        )
    return result
