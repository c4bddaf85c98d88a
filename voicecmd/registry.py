import logging
from collections import Counter
from dataclasses import dataclass, replace
from typing import Optional

from .errors import VoiceCommandError

log = logging.getLogger(__name__)

COMMANDS = (
    "Turn on lights",
    "Turn off lights",
    "Increase temperature",
    "Decrease temperature",
    "Open curtains",
    "Close curtains",
    "Play music",
)
MIN_VALUE, MAX_VALUE = 1, len(COMMANDS)


def command_label(value):
    if isinstance(value, int) and MIN_VALUE <= value <= MAX_VALUE:
        return COMMANDS[value - 1]
    return "Unknown command"


@dataclass(frozen=True)
class Command:
    id: str
    created_at: int
    creator: str
    is_verified: bool = False
    clear_value: Optional[int] = None
    ciphertext_handle: Optional[str] = None

    def __post_init__(self):
        if self.is_verified != (self.clear_value is not None):
            raise ValueError(f"{self.id}: clear_value must be set iff verified")

    @property
    def label(self):
        return command_label(self.clear_value) if self.is_verified else None

    @classmethod
    def from_entry(cls, command_id, entry, ciphertext_handle=None):
        return cls(
            id=command_id,
            created_at=entry.created_at,
            creator=entry.creator,
            is_verified=entry.is_verified,
            clear_value=entry.clear_value,
            ciphertext_handle=ciphertext_handle,
        )


@dataclass(frozen=True)
class Stats:
    total: int = 0
    verified: int = 0
    active_users: int = 0

    @classmethod
    def of(cls, commands):
        return cls(
            total=len(commands),
            verified=sum(1 for c in commands if c.is_verified),
            active_users=len({c.creator for c in commands}),
        )


class CommandRegistry:
    """Locally known commands, as an immutable snapshot swapped on change."""

    def __init__(self, ledger):
        self._ledger = ledger
        self._commands = ()

    @property
    def commands(self):
        return self._commands

    @property
    def stats(self):
        return Stats.of(self._commands)

    def distribution(self):
        return Counter(c.label for c in self._commands if c.is_verified)

    def get(self, command_id):
        for c in self._commands:
            if c.id == command_id:
                return c
        return None

    def __contains__(self, command_id):
        return self.get(command_id) is not None

    def __len__(self):
        return len(self._commands)

    def add(self, command):
        if command.id in self:
            raise VoiceCommandError(f"duplicate command id {command.id}")
        self._commands = self._commands + (command,)

    def mark_verified(self, command_id, clear_value):
        current = self.get(command_id)
        if current is None:
            log.debug("mark_verified: %s not in registry", command_id)
            return None
        if current.is_verified and current.clear_value == clear_value:
            return current
        updated = replace(current, is_verified=True, clear_value=clear_value)
        self._commands = tuple(updated if c.id == command_id else c for c in self._commands)
        return updated

    def _merge(self, cmd, old):
        if old is None:
            return cmd
        if old.ciphertext_handle and not cmd.ciphertext_handle:
            cmd = replace(cmd, ciphertext_handle=old.ciphertext_handle)
        if old.is_verified and not cmd.is_verified:
            log.warning("ledger reports %s unverified; keeping local verified state", cmd.id)
            cmd = replace(cmd, is_verified=True, clear_value=old.clear_value)
        return cmd

    async def reload(self):
        ids = await self._ledger.list_ids()
        fresh = []
        seen = set()
        for command_id in ids:
            if command_id in seen:
                continue
            seen.add(command_id)
            try:
                entry = await self._ledger.get_entry(command_id)
                cmd = Command.from_entry(command_id, entry)
            except Exception as e:
                log.error("error loading command %s: %s", command_id, e)
                continue
            fresh.append(cmd)
        # merge against the store as it is now; reads above may have interleaved
        current = {c.id: c for c in self._commands}
        self._commands = tuple(self._merge(cmd, current.get(cmd.id)) for cmd in fresh)
        stats = self.stats
        log.info("reloaded %d commands (%d verified, %d users)", stats.total, stats.verified, stats.active_users)
        return self._commands
