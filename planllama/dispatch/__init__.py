"""Outbound job submission and result correlation."""

from .correlator import Correlator, PendingCall
from .dispatcher import Dispatcher
from .responses import expect, parse_response

__all__ = ["Correlator", "Dispatcher", "PendingCall", "expect", "parse_response"]
