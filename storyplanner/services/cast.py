"""
Cast continuity across plan generations.

A new plan only knows the characters of one chapter. `reconcile` folds it
into the cast already on file so portraits and `done` states survive, and
characters missing from this chapter are carried over unchanged.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from storyplanner.models import Character, ItemStatus, SheetCharacter, character_key


def characters_from_sheet(entries: Iterable[SheetCharacter]) -> list[Character]:
    return [Character(name=entry.name.strip(), physical_description=entry.physical_description) for entry in entries]


def _merge(retained: Character, incoming: Character) -> Character:
    # The established spelling of the name wins; the new description wins.
    status = ItemStatus.DONE if retained.status == ItemStatus.DONE else incoming.status
    return incoming.model_copy(
        update={
            "name": retained.name,
            "image_url": incoming.image_url or retained.image_url,
            "status": status,
        }
    )


def reconcile(retained: Sequence[Character], incoming: Sequence[Character]) -> list[Character]:
    """Merge `incoming` over `retained`, keyed by case-insensitive name.

    Result order: incoming characters (merged where known), then retained
    characters the incoming list did not mention. Repeated names inside
    `incoming` collapse to their first occurrence.
    """
    retained_by_key: dict[str, Character] = {}
    for character in retained:
        retained_by_key.setdefault(character.key, character)

    merged: list[Character] = []
    seen: set[str] = set()
    for character in incoming:
        key = character.key
        if key in seen:
            continue
        seen.add(key)
        previous = retained_by_key.get(key)
        merged.append(_merge(previous, character) if previous is not None else character)

    survivors = [character for character in retained if character.key not in seen]
    return merged + survivors
