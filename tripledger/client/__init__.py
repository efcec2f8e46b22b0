"""Async client for the TripLedger API: HTTP client, local cache, optimistic mutations."""

from tripledger.client.api import LedgerApiClient
from tripledger.client.cache import LedgerCache, LedgerSnapshot
from tripledger.client.listener import ReconciliationListener
from tripledger.client.models import EntrySplit, LedgerEntry, LedgerListing, MemberInfo
from tripledger.client.pipeline import Mutation, MutationKind, MutationPipeline, MutationState
from tripledger.client.trip_view import TripView

__all__ = [
    "EntrySplit",
    "LedgerApiClient",
    "LedgerCache",
    "LedgerEntry",
    "LedgerListing",
    "LedgerSnapshot",
    "MemberInfo",
    "Mutation",
    "MutationKind",
    "MutationPipeline",
    "MutationState",
    "ReconciliationListener",
    "TripView",
]
