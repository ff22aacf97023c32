"""Host actions as a closed set of typed payloads.

Raw ``{action, payload}`` JSON is parsed here, at the request boundary, so the
phase controller only ever sees one of the dataclasses below.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Union

from quizparty.errors import ValidationError


class ActionName(str, Enum):
    START_GAME = 'START_GAME'
    ADVANCE = 'ADVANCE'
    REVEAL = 'REVEAL'
    BACK = 'BACK'
    FINISH = 'FINISH'
    RESTART = 'RESTART'


@dataclass(frozen=True)
class GradeItem:
    correct: bool
    grading_key: Optional[int] = None
    question_id: Optional[int] = None
    participant_id: Optional[int] = None


@dataclass(frozen=True)
class StartGame:
    shuffle: bool = False
    expected_version: Optional[int] = None
    name = ActionName.START_GAME


@dataclass(frozen=True)
class Advance:
    confirm: bool = False
    expected_version: Optional[int] = None
    name = ActionName.ADVANCE


@dataclass(frozen=True)
class Reveal:
    expected_version: Optional[int] = None
    name = ActionName.REVEAL


@dataclass(frozen=True)
class Back:
    expected_version: Optional[int] = None
    name = ActionName.BACK


@dataclass(frozen=True)
class Finish:
    grades: List[GradeItem] = field(default_factory=list)
    expected_version: Optional[int] = None
    name = ActionName.FINISH


@dataclass(frozen=True)
class Restart:
    expected_version: Optional[int] = None
    name = ActionName.RESTART


Action = Union[StartGame, Advance, Reveal, Back, Finish, Restart]


def _bool(payload: Mapping[str, Any], key: str, default: bool = False) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ValidationError(f"'{key}' must be a boolean", entity='action')
    return value


def _optional_int(payload: Mapping[str, Any], key: str) -> Optional[int]:
    value = payload.get(key)
    if value is None:
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"'{key}' must be an integer", entity='action')
    return value


def parse_grade_items(raw: Any) -> List[GradeItem]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("'grades' must be a list", entity='grading')
    items = []
    for pos, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            raise ValidationError(f'grade #{pos + 1} must be an object', entity='grading')
        if 'correct' not in entry or not isinstance(entry['correct'], bool):
            raise ValidationError(f"grade #{pos + 1} needs a boolean 'correct'", entity='grading')
        item = GradeItem(
            correct=entry['correct'],
            grading_key=_optional_int(entry, 'grading_key'),
            question_id=_optional_int(entry, 'question_id'),
            participant_id=_optional_int(entry, 'participant_id'),
        )
        if item.grading_key is None and (item.question_id is None or item.participant_id is None):
            raise ValidationError(
                f"grade #{pos + 1} needs 'grading_key' or both 'question_id' and 'participant_id'",
                entity='grading',
            )
        items.append(item)
    return items


def parse_action(name: Any, payload: Any) -> Action:
    """Validate an action name and its payload into a typed action."""
    try:
        action_name = ActionName(name)
    except ValueError:
        allowed = ', '.join(a.value for a in ActionName)
        raise ValidationError(f'Unknown action {name!r}; expected one of {allowed}', entity='action')
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValidationError('payload must be an object', entity='action', action=action_name.value)

    expected_version = _optional_int(payload, 'expected_version')
    if action_name is ActionName.START_GAME:
        return StartGame(shuffle=_bool(payload, 'shuffle'), expected_version=expected_version)
    if action_name is ActionName.ADVANCE:
        return Advance(confirm=_bool(payload, 'confirm'), expected_version=expected_version)
    if action_name is ActionName.REVEAL:
        return Reveal(expected_version=expected_version)
    if action_name is ActionName.BACK:
        return Back(expected_version=expected_version)
    if action_name is ActionName.FINISH:
        return Finish(grades=parse_grade_items(payload.get('grades')), expected_version=expected_version)
    return Restart(expected_version=expected_version)
