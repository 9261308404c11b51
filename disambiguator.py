"""
Install-conflict disambiguation.

The installer proposes one or more destinations for every file of a mod.
Two kinds of conflict can come out of that:

* destination ambiguity: one source, several plausible destinations
  (e.g. a ``vehicles.meta`` replacement that matches three known files);
* source ambiguity: several sources that ended up on the same destination.

``InstallDisambiguator.resolve`` settles both, in that order, by asking a
``ChoiceProvider``. Asking suspends the coroutine until the provider answers;
nothing else in the process is blocked. A single cancellation fails the whole
batch (one mod), so a half-resolved mod never produces instructions.

Public API
----------
InstallDisambiguator(provider, batch).resolve(candidates)
    -> list[CopyInstruction], one per resolved destination
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Literal, Optional, Protocol, Sequence

from errors import AmbiguityCancelled, ChoiceAlreadyPending, InvalidChoice

ChoicePhase = Literal["destination", "source"]

DESTINATION_PROMPT = (
    "It's unclear where these files should be installed, there are multiple options."
)
SOURCE_PROMPT = (
    "Multiple files would be installed to the same destination, you have to pick which to keep."
)

_log = logging.getLogger(__name__)


# ── Records ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DestinationCandidates:
    source: str
    destinations: tuple[str, ...]

    def __post_init__(self):
        if not self.destinations:
            raise ValueError(f"No destination proposed for {self.source!r}")
        object.__setattr__(self, "destinations", tuple(self.destinations))

    @property
    def is_ambiguous(self) -> bool:
        return len(self.destinations) > 1


@dataclass(frozen=True)
class SourceCandidates:
    sources: tuple[str, ...]
    destination: str

    def __post_init__(self):
        if not self.sources:
            raise ValueError(f"No source proposed for {self.destination!r}")
        object.__setattr__(self, "sources", tuple(self.sources))

    @property
    def is_ambiguous(self) -> bool:
        return len(self.sources) > 1


@dataclass(frozen=True)
class ResolvedPair:
    source: str
    destination: str


@dataclass(frozen=True)
class CopyInstruction:
    source: str
    destination: str
    type: str = "copy"

    def as_dict(self) -> dict[str, str]:
        return {"type": self.type, "source": self.source, "destination": self.destination}


@dataclass(frozen=True)
class ChoiceRequest:
    """One question for the user: pick one of ``options`` for ``key``."""

    batch: str
    phase: ChoicePhase
    key: str
    options: tuple[str, ...]

    @property
    def prompt(self) -> str:
        return DESTINATION_PROMPT if self.phase == "destination" else SOURCE_PROMPT

    @property
    def key_label(self) -> str:
        return "Source" if self.phase == "destination" else "Destination"


# ── Choice providers ──────────────────────────────────────────────────


class ChoiceProvider(Protocol):
    """Boundary to whatever asks the user.

    Implementations return one of ``request.options``, or raise
    ``AmbiguityCancelled`` if the user backs out.
    """

    async def request_choice(self, request: ChoiceRequest) -> str: ...


@dataclass
class _PendingChoice:
    request: ChoiceRequest
    future: asyncio.Future[str]


class PendingChoiceProvider:
    """Parks every request on its own future until someone answers it.

    A UI layer lists ``pending()`` requests and calls ``answer`` or ``cancel``;
    ``on_request`` is notified as soon as a new request is parked.
    """

    def __init__(self, on_request: Optional[Callable[[ChoiceRequest], None]] = None):
        self.on_request = on_request
        self._pending: dict[tuple[str, ChoicePhase, str], _PendingChoice] = {}

    async def request_choice(self, request: ChoiceRequest) -> str:
        slot = (request.batch, request.phase, request.key)
        if slot in self._pending:
            raise ChoiceAlreadyPending(request.key, request.batch)
        pending = _PendingChoice(request, asyncio.get_running_loop().create_future())
        self._pending[slot] = pending
        try:
            if self.on_request is not None:
                self.on_request(request)
            return await pending.future
        finally:
            if self._pending.get(slot) is pending:
                del self._pending[slot]

    def pending(self, batch: str | None = None) -> list[ChoiceRequest]:
        return [
            entry.request
            for entry in self._pending.values()
            if batch is None or entry.request.batch == batch
        ]

    def _lookup(self, batch: str, key: str, phase: ChoicePhase | None) -> _PendingChoice:
        for (slot_batch, slot_phase, slot_key), entry in self._pending.items():
            if slot_batch == batch and slot_key == key and phase in (None, slot_phase):
                return entry
        raise KeyError(f"No pending choice for {key!r} in {batch!r}")

    def answer(self, batch: str, key: str, choice: str, phase: ChoicePhase | None = None) -> None:
        entry = self._lookup(batch, key, phase)
        if not entry.future.done():
            entry.future.set_result(choice)

    def cancel(self, batch: str, key: str, phase: ChoicePhase | None = None) -> None:
        entry = self._lookup(batch, key, phase)
        if not entry.future.done():
            entry.future.set_exception(AmbiguityCancelled(key, batch))

    def cancel_batch(self, batch: str) -> int:
        cancelled = 0
        for entry in list(self._pending.values()):
            if entry.request.batch == batch and not entry.future.done():
                entry.future.set_exception(AmbiguityCancelled(entry.request.key, batch))
                cancelled += 1
        return cancelled


# ── Resolution ────────────────────────────────────────────────────────


def group_by_destination(pairs: Sequence[ResolvedPair]) -> list[SourceCandidates]:
    """Collect the sources of each destination, in first-seen order."""
    grouped: dict[str, dict[str, None]] = {}
    for pair in pairs:
        grouped.setdefault(pair.destination, {})[pair.source] = None
    return [SourceCandidates(list(sources), destination) for destination, sources in grouped.items()]


class InstallDisambiguator:
    def __init__(self, provider: ChoiceProvider, batch: str = "default"):
        self._provider = provider
        self.batch = batch

    async def resolve(self, candidates: Sequence[DestinationCandidates]) -> list[CopyInstruction]:
        """Run both phases and return one copy instruction per destination."""
        chosen = await self.resolve_destinations(candidates)
        resolved = await self.resolve_sources(group_by_destination(chosen))
        _log.info(
            "Resolved %d file(s) to %d copy instruction(s) for %s",
            len(candidates),
            len(resolved),
            self.batch,
        )
        return [CopyInstruction(source=pair.source, destination=pair.destination) for pair in resolved]

    async def resolve_destinations(
        self, candidates: Sequence[DestinationCandidates]
    ) -> list[ResolvedPair]:
        clear = [
            ResolvedPair(entry.source, entry.destinations[0])
            for entry in candidates
            if not entry.is_ambiguous
        ]
        # a source listed twice (duplicate archive members) is asked about once,
        # with the options of all its entries
        ambiguous: dict[str, dict[str, None]] = {}
        for entry in candidates:
            if entry.is_ambiguous:
                options = ambiguous.setdefault(entry.source, {})
                options.update(dict.fromkeys(entry.destinations))
        if not ambiguous:
            return clear

        requests = [
            ChoiceRequest(self.batch, "destination", source, tuple(options))
            for source, options in ambiguous.items()
        ]
        choices = await self._ask_all(requests)
        return [ResolvedPair(req.key, choice) for req, choice in zip(requests, choices)] + clear

    async def resolve_sources(self, candidates: Sequence[SourceCandidates]) -> list[ResolvedPair]:
        clear = [
            ResolvedPair(entry.sources[0], entry.destination)
            for entry in candidates
            if not entry.is_ambiguous
        ]
        ambiguous = [entry for entry in candidates if entry.is_ambiguous]
        if not ambiguous:
            return clear

        requests = [
            ChoiceRequest(self.batch, "source", entry.destination, entry.sources)
            for entry in ambiguous
        ]
        choices = await self._ask_all(requests)
        return [ResolvedPair(choice, req.key) for req, choice in zip(requests, choices)] + clear

    async def _ask_all(self, requests: list[ChoiceRequest]) -> list[str]:
        # all questions of a phase are open at once, like a single dialog
        _log.info(
            "Waiting on %d %s choice(s) for %s", len(requests), requests[0].phase, self.batch
        )
        tasks = [asyncio.ensure_future(self._ask(request)) for request in requests]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    async def _ask(self, request: ChoiceRequest) -> str:
        choice = await self._provider.request_choice(request)
        if choice not in request.options:
            raise InvalidChoice(request.key, choice, request.options)
        _log.debug("%s %r -> %r", request.phase, request.key, choice)
        return choice
