"""Who is "you" across reconnects.

A caller is identified by a device token first and by display name second.
A name match reclaims the existing participant on the new device instead of
creating a duplicate row.
"""

import re
import secrets
from typing import Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from quizparty import db
from quizparty.errors import ConflictError, NotFoundError, ValidationError
from quizparty.models import Participant, Quiz

_WHITESPACE = re.compile(r'\s+')
MAX_NAME_LENGTH = 64


def clean_display_name(display_name: Optional[str]) -> str:
    """Trim and collapse whitespace, keeping the original casing."""
    return _WHITESPACE.sub(' ', (display_name or '').strip())


def name_key(display_name: Optional[str]) -> str:
    return clean_display_name(display_name).casefold()


def new_device_token() -> str:
    return secrets.token_urlsafe(24)


def find_by_token(quiz: Quiz, device_token: Optional[str]) -> Optional[Participant]:
    if not device_token:
        return None
    return Participant.query.filter_by(quiz_id=quiz.id, device_token=device_token).first()


def _validated_name(display_name: Optional[str]) -> str:
    cleaned = clean_display_name(display_name)
    if not cleaned:
        raise ValidationError('Display name is required', entity='participant')
    if len(cleaned) > MAX_NAME_LENGTH:
        raise ValidationError(f'Display name is limited to {MAX_NAME_LENGTH} characters', entity='participant')
    return cleaned


def _name_taken(participant: Participant, key: str) -> bool:
    return Participant.query.filter(
        Participant.quiz_id == participant.quiz_id,
        Participant.name_key == key,
        Participant.id != participant.id,
    ).first() is not None


def _apply_rename(participant: Participant, cleaned: str) -> None:
    key = cleaned.casefold()
    if key != participant.name_key and _name_taken(participant, key):
        raise ValidationError(f'The name "{cleaned}" is already taken', entity='participant')
    participant.display_name = cleaned
    participant.name_key = key


def rename_participant(participant: Participant, display_name: Optional[str]) -> Participant:
    _apply_rename(participant, _validated_name(display_name))
    db.session.add(participant)
    db.session.commit()
    return participant


def _resolve(quiz: Quiz, device_token: str, cleaned: str) -> Tuple[Participant, bool]:
    participant = find_by_token(quiz, device_token)
    if participant:
        # A name held by someone else leaves the stored name in place
        if participant.display_name != cleaned and not _name_taken(participant, cleaned.casefold()):
            _apply_rename(participant, cleaned)
            db.session.add(participant)
            db.session.commit()
        return participant, True

    participant = Participant.query.filter_by(quiz_id=quiz.id, name_key=cleaned.casefold()).first()
    if participant:
        participant.device_token = device_token
        db.session.add(participant)
        db.session.commit()
        current_app.logger.info(f"[rejoin] quiz={quiz.id} participant={participant.id} reclaimed by name")
        return participant, True

    participant = Participant(
        quiz_id=quiz.id,
        display_name=cleaned,
        name_key=cleaned.casefold(),
        device_token=device_token,
    )
    db.session.add(participant)
    db.session.commit()
    current_app.logger.info(f"[join] quiz={quiz.id} participant={participant.id}")
    return participant, False


def resolve_or_create_participant(quiz: Quiz, device_token: Optional[str], display_name: Optional[str]) -> Tuple[Participant, bool]:
    """Return ``(participant, rejoined)`` for the caller.

    Raises ``ValidationError`` for an empty name and ``NotFoundError`` for an
    archived quiz. A unique-constraint race with a concurrent join is resolved
    by running the lookup once more against the winner's row.
    """
    cleaned = _validated_name(display_name)
    if quiz.is_archived:
        raise NotFoundError('Quiz not found', entity='quiz')
    token = device_token or new_device_token()
    try:
        return _resolve(quiz, token, cleaned)
    except IntegrityError:
        db.session.rollback()
    try:
        return _resolve(quiz, token, cleaned)
    except IntegrityError:
        db.session.rollback()
        raise ConflictError('Concurrent join for the same participant, please retry', entity='participant', action='join')
