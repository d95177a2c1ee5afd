"""
Single-use tickets for the console stream handshake.

A browser cannot set an Authorization header on a WebSocket upgrade, and a
bearer token in the URL ends up in proxy logs and history. Instead the client
trades its access token for a ticket that lives 30 seconds and can be
redeemed exactly once.

Tickets are process-local and only reachable through ``TicketBroker``.
Restarting the process drops all of them.
"""

import asyncio
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from loguru import logger

from ..errors import TicketStoreFull

TICKET_BYTES = 32
TICKET_TTL_SECONDS = 30.0
SWEEP_INTERVAL_SECONDS = 60.0
MAX_OUTSTANDING_TICKETS = 10_000


@dataclass(frozen=True)
class Ticket:
    """
    An issued ticket.

    Attributes:
        ticket_id: 64 hex characters (32 random bytes)
        username: User the ticket was issued to
        issued_at: Monotonic issue time
        expires_at: Monotonic expiry time
    """
    ticket_id: str
    username: str
    issued_at: float
    expires_at: float

    @property
    def expires_in(self) -> int:
        """Lifetime in whole seconds, as reported to the client."""
        return int(round(self.expires_at - self.issued_at))


class TicketBroker:
    """
    Issues and redeems stream tickets.

    All access to the ticket map goes through one lock. Redemption removes
    the entry while holding it, so of two concurrent redeemers exactly one
    gets the username.
    """

    def __init__(
        self,
        ttl: float = TICKET_TTL_SECONDS,
        max_outstanding: int = MAX_OUTSTANDING_TICKETS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize broker.

        Args:
            ttl: Ticket lifetime in seconds
            max_outstanding: Upper bound on unredeemed tickets held in memory
            clock: Monotonic time source (injectable for tests)
        """
        self.ttl = ttl
        self.max_outstanding = max_outstanding
        self._clock = clock
        self._tickets: Dict[str, Ticket] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tickets)

    def _sweep_locked(self, now: float) -> int:
        expired = [tid for tid, t in self._tickets.items() if now >= t.expires_at]
        for tid in expired:
            del self._tickets[tid]
        return len(expired)

    def issue(self, username: str) -> Ticket:
        """
        Issue a ticket for an already-authenticated user.

        Args:
            username: User the ticket will be bound to

        Returns:
            The new Ticket

        Raises:
            TicketStoreFull: If the store is full even after dropping expired tickets
        """
        ticket_id = secrets.token_hex(TICKET_BYTES)

        with self._lock:
            now = self._clock()
            if len(self._tickets) >= self.max_outstanding:
                self._sweep_locked(now)
                if len(self._tickets) >= self.max_outstanding:
                    logger.warning(f"Ticket store full ({self.max_outstanding} outstanding), refusing ticket")
                    raise TicketStoreFull()

            ticket = Ticket(
                ticket_id=ticket_id,
                username=username,
                issued_at=now,
                expires_at=now + self.ttl,
            )
            self._tickets[ticket_id] = ticket

        logger.debug(f"Stream ticket issued for user {username!r}")
        return ticket

    def redeem(self, ticket_id: str) -> Optional[str]:
        """
        Consume a ticket.

        The entry is removed before the result is returned, whether or not it
        had expired.

        Args:
            ticket_id: Ticket presented on the handshake

        Returns:
            The bound username, or None if the ticket is absent, expired or
            already consumed
        """
        if not isinstance(ticket_id, str) or not ticket_id:
            return None

        with self._lock:
            ticket = self._tickets.pop(ticket_id, None)
            now = self._clock()

        if ticket is None:
            return None
        if now >= ticket.expires_at:
            logger.debug(f"Expired stream ticket presented for user {ticket.username!r}")
            return None
        return ticket.username

    def sweep_expired(self) -> int:
        """
        Drop expired tickets.

        Returns:
            Number of tickets removed
        """
        with self._lock:
            return self._sweep_locked(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._tickets.clear()

    async def run_sweeper(self, interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        """Sweep expired tickets every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            removed = self.sweep_expired()
            if removed:
                logger.debug(f"Swept {removed} expired stream tickets")
