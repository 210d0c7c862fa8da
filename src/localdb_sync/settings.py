"""
Settings parsing -- turn the remote settings document into sync configs.

The settings YAML is maintained upstream and fetched at run time, so it
is read with a tolerant line scanner instead of a strict YAML loader:
only the ``networks:`` and ``orderbooks:`` sections matter, and a bad
value in one entry must never take the others down with it.

    networks:
      Optimism:
        chain-id: 10
        rpcs:
          - https://rpc.optimism.io
    orderbooks:
      Optimism:
        address: 0x1234
        deployment-block: 9000
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Union

from .errors import ParseError, SettingsError
from .models import (
    BuildResult,
    NetworkSettings,
    OrderbookConfig,
    OrderbookSettings,
    ParsedSettings,
    SkipReason,
)

logger = logging.getLogger("localdb_sync.settings")

_KEY_VALUE = re.compile(r"^([^:]+):\s*(.+)$")
_DEC_INT = re.compile(r"^[0-9]+\Z")
_HEX_INT = re.compile(r"^0[xX][0-9a-fA-F]+\Z")
_SETTINGS_URL = re.compile(r"""REMOTE_SETTINGS_URL\s*=\s*['"]([^'"]+)['"]""")
_LINE_BREAK = re.compile(r"\r?\n")


class ParserState(str, Enum):
    """Which top-level section the scanner is in."""

    OUTSIDE = "outside"
    NETWORKS = "networks"
    ORDERBOOKS = "orderbooks"


SECTION_LABELS = {
    "networks:": ParserState.NETWORKS,
    "orderbooks:": ParserState.ORDERBOOKS,
}


@dataclass(frozen=True)
class Ok:
    value: Any


@dataclass(frozen=True)
class Skipped:
    reason: str


FieldResult = Union[Ok, Skipped]


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1].strip()
    return value


def parse_int(value: str) -> FieldResult:
    """Parse a non-negative decimal or 0x-prefixed hex integer.

    Signs, underscores, decimal points and non-ASCII digits are rejected.
    """
    text = _unquote(value.strip())
    if _HEX_INT.match(text):
        return Ok(int(text, 16))
    if _DEC_INT.match(text):
        return Ok(int(text))
    return Skipped(f"not an integer: {value!r}")


def parse_text(value: str) -> FieldResult:
    text = _unquote(value.strip())
    if not text:
        return Skipped("empty value")
    return Ok(text)


def _parse_flow_list(value: str) -> Optional[list[str]]:
    """Parse an inline ``[a, b]`` list, or return None if it is not one."""
    text = value.strip()
    if not (text.startswith("[") and text.endswith("]")):
        return None
    items = [_unquote(item.strip()) for item in text[1:-1].split(",")]
    return [item for item in items if item]


class _SettingsScanner:
    """Line-by-line state machine over a settings document.

    Entry indentation is learned from the first indented line of each
    section, so both 2-space and 4-space documents parse.
    """

    def __init__(self) -> None:
        self.state = ParserState.OUTSIDE
        self.entry_indent: Optional[int] = None
        self.current: Optional[str] = None
        self.list_indent: Optional[int] = None
        self.networks: dict[str, NetworkSettings] = {}
        self.orderbooks: dict[str, OrderbookSettings] = {}
        self.skipped: list[str] = []

    def feed(self, raw_line: str) -> None:
        line = raw_line.rstrip()
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            return

        indent = len(line) - len(line.lstrip())
        if indent == 0:
            self._enter(SECTION_LABELS.get(stripped, ParserState.OUTSIDE))
            return

        if self.state is ParserState.OUTSIDE:
            return

        if self.entry_indent is None:
            self.entry_indent = indent

        if indent <= self.entry_indent:
            self.current = None
            self.list_indent = None
            if indent == self.entry_indent and stripped.endswith(":"):
                self._open_entry(stripped[:-1].strip())
            return

        if self.current is None:
            return

        if self.state is ParserState.NETWORKS:
            self._network_line(indent, stripped)
        else:
            self._orderbook_line(stripped)

    def result(self) -> ParsedSettings:
        return ParsedSettings(
            networks=self.networks,
            orderbooks=self.orderbooks,
            skipped=self.skipped,
        )

    def _enter(self, state: ParserState) -> None:
        self.state = state
        self.entry_indent = None
        self.current = None
        self.list_indent = None

    def _open_entry(self, name: str) -> None:
        name = _unquote(name)
        if not name:
            return
        self.current = name
        if self.state is ParserState.NETWORKS:
            self.networks.setdefault(name, NetworkSettings())
        else:
            self.orderbooks.setdefault(name, OrderbookSettings())

    def _skip(self, key: str, reason: str) -> None:
        message = f"{self.state.value}.{self.current}.{key}: {reason}"
        self.skipped.append(message)
        logger.debug("Ignoring %s", message)

    def _network_line(self, indent: int, stripped: str) -> None:
        network = self.networks[self.current]

        if self.list_indent is not None:
            if indent > self.list_indent and stripped.startswith("-"):
                result = parse_text(stripped[1:])
                if isinstance(result, Ok):
                    network.rpcs.append(result.value)
                else:
                    self._skip("rpcs", result.reason)
                return
            if indent <= self.list_indent:
                self.list_indent = None

        if stripped.endswith(":"):
            key = stripped[:-1].strip()
            if key == "rpcs":
                self.list_indent = indent
                network.rpcs = []
            else:
                self.list_indent = None
            return

        match = _KEY_VALUE.match(stripped)
        if not match:
            return
        key, value = match.group(1).strip(), match.group(2).strip()

        if key == "chain-id":
            result = parse_int(value)
            if isinstance(result, Ok):
                network.chain_id = result.value
            else:
                self._skip(key, result.reason)
        elif key == "rpcs":
            items = _parse_flow_list(value)
            if items is None:
                self._skip(key, f"expected a list: {value!r}")
            else:
                network.rpcs = items

    def _orderbook_line(self, stripped: str) -> None:
        orderbook = self.orderbooks[self.current]

        match = _KEY_VALUE.match(stripped)
        if not match:
            if stripped.endswith(":"):
                self._skip(stripped[:-1].strip(), "empty value")
            return
        key, value = match.group(1).strip(), match.group(2).strip()

        if key == "address":
            result = parse_text(value)
            if isinstance(result, Ok):
                orderbook.address = result.value
            else:
                self._skip(key, result.reason)
        elif key == "deployment-block":
            result = parse_int(value)
            if isinstance(result, Ok):
                orderbook.deployment_block = result.value
            else:
                self._skip(key, result.reason)


def parse_settings_yaml(text: Union[str, bytes]) -> ParsedSettings:
    """Parse the networks and orderbooks sections of a settings document.

    Malformed lines and values are skipped and recorded in
    ``ParsedSettings.skipped``; they never abort the parse.

    Args:
        text: Settings document as text or UTF-8 bytes.

    Returns:
        ParsedSettings with whatever could be read.

    Raises:
        ParseError: If the input cannot be decoded as text.
    """
    if isinstance(text, (bytes, bytearray)):
        try:
            text = bytes(text).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(f"Settings document is not valid UTF-8: {exc}") from exc
    if not isinstance(text, str):
        raise ParseError(f"Settings document must be text, got {type(text).__name__}")

    scanner = _SettingsScanner()
    for line in _LINE_BREAK.split(text):
        scanner.feed(line)
    return scanner.result()


def extract_settings_url(constants_source: str) -> str:
    """Find ``REMOTE_SETTINGS_URL`` in the webapp constants source.

    Raises:
        SettingsError: If the constant is not present.
    """
    match = _SETTINGS_URL.search(constants_source)
    if not match:
        raise SettingsError("Unable to locate REMOTE_SETTINGS_URL in constants source")
    return match.group(1)


def normalize_rpcs(rpcs: Iterable[str]) -> list[str]:
    """Trim, drop blanks, and de-duplicate keeping first-seen order."""
    seen: dict[str, None] = {}
    for rpc in rpcs:
        rpc = rpc.strip()
        if rpc:
            seen.setdefault(rpc, None)
    return list(seen)


def build_orderbook_configs(
    settings: ParsedSettings,
    selected: Optional[Iterable[str]] = None,
) -> BuildResult:
    """Join networks and orderbooks into validated sync configs.

    Args:
        settings: Output of :func:`parse_settings_yaml`.
        selected: Network names to keep (case-insensitive). None keeps all.

    Returns:
        BuildResult with configs in settings order and one skip reason
        per incomplete entry.
    """
    wanted = None
    if selected is not None:
        wanted = {name.strip().lower() for name in selected if name.strip()}
    result = BuildResult()

    for network, orderbook in settings.orderbooks.items():
        if wanted is not None and network.lower() not in wanted:
            continue

        reason = None
        info = settings.networks.get(network)
        rpcs: list[str] = []
        if info is None:
            reason = "missing network configuration"
        elif info.chain_id is None:
            reason = "chain-id not defined"
        elif not orderbook.address or orderbook.deployment_block is None:
            reason = "orderbook data incomplete"
        else:
            rpcs = normalize_rpcs(info.rpcs)
            if not rpcs:
                reason = "no RPC endpoints configured"

        if reason is not None:
            skip = SkipReason(network=network, reason=reason)
            logger.info("%s", skip)
            result.skipped.append(skip)
            continue

        result.configs.append(OrderbookConfig(
            network=network,
            chain_id=info.chain_id,
            orderbook_address=orderbook.address,
            deployment_block=orderbook.deployment_block,
            rpcs=rpcs,
        ))

    return result
