"""Network probes: ``tcp``, ``udp``, ``ping``, ``dns`` and ``http``."""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from collections.abc import Mapping
from contextlib import suppress
from typing import TYPE_CHECKING, Final

import httpx
import psutil
import structlog

from specsheet.checks.base import Check, DataPoint, Step, register_check
from specsheet.checks.contents import ContentsMatcher, as_contents
from specsheet.checks.params import (
    Parameter,
    ParameterErrors,
    ParameterSchema,
    RawTable,
    as_integer,
    as_string,
    as_string_map,
    in_range,
    ip_address,
    non_empty,
    one_of,
)
from specsheet.constants import (
    HTTP_TIMEOUT_SECONDS,
    HTTP_USER_AGENT,
    TCP_CONNECT_TIMEOUT_SECONDS,
    UDP_RESPONSE_TIMEOUT_SECONDS,
)

if TYPE_CHECKING:
    from specsheet.checks.execution import CheckContext

logger = structlog.get_logger(__name__)

_DEFAULT_ADDRESS: Final[str] = "127.0.0.1"
_UDP_PAYLOAD: Final[bytes] = bytes(range(6))
_PING_SUCCESS: Final[str] = "1 packets transmitted, 1 received, 0% packet loss"
_RECORD_TYPES: Final[tuple[str, ...]] = ("A", "AAAA", "CAA", "CNAME", "MX", "NS", "SRV", "TXT")

# Content-type classes: (type, subtype, structured-syntax suffix) alternatives.
_CONTENT_CLASSES: Final[dict[str, tuple[tuple[str, str, str | None], ...]]] = {
    "ATOM": (("application", "atom", "xml"),),
    "CSS": (("text", "css", None),),
    "EOT": (("application", "vnd.ms-fontobject", None),),
    "FLIF": (("image", "flif", None),),
    "GIF": (("image", "gif", None),),
    "HTML": (("text", "html", None),),
    "ICO": (("image", "x-icon", None), ("image", "vnd.microsoft.icon", None)),
    "JPEG": (("image", "jpeg", None),),
    "JS": (("text", "javascript", None), ("application", "javascript", None)),
    "JSON": (("application", "json", None),),
    "JSONFEED": (("application", "feed", "json"),),
    "OTF": (("font", "opentype", None),),
    "PDF": (("application", "pdf", None),),
    "PNG": (("image", "png", None),),
    "SVG": (("image", "svg", "xml"),),
    "TTF": (("font", "ttf", None),),
    "TXT": (("text", "plain", None),),
    "WEBP": (("image", "webp", None),),
    "WOFF": (("font", "woff", None), ("application", "font-woff", None)),
    "WOFF2": (("font", "woff2", None), ("application", "font-woff2", None)),
    "XML": (("text", "xml", None), ("application", "xml", None)),
    "ZIP": (("application", "zip", None),),
}

_PORT = Parameter("port", as_integer, required=True, predicates=(in_range(1, 65535),))


def _source(value: object) -> str | None:
    text = str(value)
    if text.startswith("%") and len(text) > 1:
        return None
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return "it must be an IP address or an interface"
    return None


def _record_type(value: object) -> str | None:
    if isinstance(value, str) and value.upper() in _RECORD_TYPES:
        return None
    return "it must be a string such as 'A', 'MX', 'SRV'..."


def _content_type(value: object) -> str | None:
    text = str(value)
    if text and all(char.isupper() or char.isdigit() for char in text):
        return None if text in _CONTENT_CLASSES else "it must be a valid content type"
    return None


class _PortCheck(Check):
    """Shared description and addressing for ``tcp`` and ``udp``."""

    protocol: str

    @property
    def port(self) -> int:
        return int(self.spec.params["port"])  # type: ignore[call-overload]

    @property
    def address(self) -> str:
        return str(self.spec.get("address") or _DEFAULT_ADDRESS)

    def _describe_target(self) -> str:
        text = f"{self.protocol} port '{self.port}'"
        address = self.spec.get("address")
        if address is not None:
            text += f" on '{address}'"
        source = self.spec.get("source")
        if isinstance(source, str):
            if source.startswith("%"):
                text += f" from interface '{source[1:]}'"
            else:
                text += f" from '{source}'"
        return text

    def properties(self) -> tuple[DataPoint, ...]:
        return (DataPoint("port", str(self.port)),)

    def _local_address(self) -> tuple[str, int] | None:
        source = self.spec.get("source")
        if not isinstance(source, str):
            return None
        if not source.startswith("%"):
            return (source, 0)
        interface = source[1:]
        for entry in psutil.net_if_addrs().get(interface, ()):
            if entry.family == socket.AF_INET:
                return (entry.address, 0)
        raise OSError(f"interface {interface!r} has no IPv4 address")


@register_check()
class TcpCheck(_PortCheck):
    """Whether a TCP handshake with a port succeeds."""

    check_type = "tcp"
    protocol = "TCP"
    schema = ParameterSchema(
        (
            _PORT,
            Parameter("address", as_string, predicates=(non_empty(),)),
            Parameter("source", as_string, predicates=(_source,)),
            Parameter("state", as_string, predicates=(one_of("open", "closed"),)),
        )
    )

    def describe(self) -> str:
        return f"{self._describe_target()} is {self.spec.get('state', 'open')}"

    async def run(self, context: CheckContext) -> list[Step]:
        is_open = await self._connect()
        if self.spec.get("state", "open") == "open":
            return [Step.passed("port is open") if is_open else Step.failed("port is closed")]
        return [Step.passed("port is closed") if not is_open else Step.failed("port is open")]

    async def _connect(self) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self.address, self.port, local_addr=self._local_address()
                ),
                timeout=TCP_CONNECT_TIMEOUT_SECONDS,
            )
        except (OSError, TimeoutError) as exc:
            logger.debug("tcp_connect_failed", address=self.address, port=self.port, error=str(exc))
            return False
        writer.close()
        with suppress(OSError):
            await writer.wait_closed()
        return True


class _DatagramProbe(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.outcome: asyncio.Future[bool] = asyncio.get_running_loop().create_future()

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        if not self.outcome.done():
            self.outcome.set_result(True)

    def error_received(self, exc: Exception) -> None:
        if not self.outcome.done():
            self.outcome.set_result(False)


@register_check()
class UdpCheck(_PortCheck):
    """Whether a UDP port answers a small datagram."""

    check_type = "udp"
    protocol = "UDP"
    schema = ParameterSchema(
        (
            _PORT,
            Parameter("address", as_string, predicates=(non_empty(),)),
            Parameter("source", as_string, predicates=(_source,)),
            Parameter("state", as_string, predicates=(one_of("responds", "no-response"),)),
        )
    )

    def describe(self) -> str:
        responds = self.spec.get("state", "responds") == "responds"
        verb = "responds" if responds else "does not respond"
        return f"{self._describe_target()} {verb}"

    async def run(self, context: CheckContext) -> list[Step]:
        responded = await self._exchange()
        if self.spec.get("state", "responds") == "responds":
            if responded:
                return [Step.passed("received a response")]
            return [Step.failed("connection refused")]
        if responded:
            return [Step.failed("received a response")]
        return [Step.passed("connection refused")]

    async def _exchange(self) -> bool:
        loop = asyncio.get_running_loop()
        try:
            transport, probe = await loop.create_datagram_endpoint(
                _DatagramProbe,
                remote_addr=(self.address, self.port),
                local_addr=self._local_address(),
            )
        except OSError as exc:
            logger.debug("udp_endpoint_failed", address=self.address, error=str(exc))
            return False
        try:
            transport.sendto(_UDP_PAYLOAD)
            return await asyncio.wait_for(probe.outcome, timeout=UDP_RESPONSE_TIMEOUT_SECONDS)
        except TimeoutError:
            return False
        finally:
            transport.close()


@register_check()
class PingCheck(Check):
    """Whether a host answers one ICMP echo request."""

    check_type = "ping"
    schema = ParameterSchema(
        (
            Parameter("target", as_string, required=True, predicates=(non_empty(),)),
            Parameter("state", as_string, predicates=(one_of("responds", "no-response"),)),
        )
    )

    @property
    def argv(self) -> tuple[str, ...]:
        return ("ping", str(self.spec.params["target"]), "-c", "1")

    def describe(self) -> str:
        target = self.spec.params["target"]
        if self.spec.get("state", "responds") == "responds":
            return f"Pinging '{target}' should receive a response"
        return f"Pinging '{target}' should time out"

    def commands(self) -> tuple[str, ...]:
        return (" ".join(self.argv),)

    async def run(self, context: CheckContext) -> list[Step]:
        result = await context.lookup(self.argv)
        if result.error is not None:
            return [Step.errored(f"command could not be run: {result.error}")]
        up = _PING_SUCCESS in result.stdout
        if self.spec.get("state", "responds") == "responds":
            return [Step.passed("Received response") if up else Step.failed("No response")]
        return [Step.passed("No response") if not up else Step.failed("Received response")]


@register_check()
class DnsCheck(Check):
    """A DNS record lookup through ``dig``."""

    check_type = "dns"
    schema = ParameterSchema(
        (
            Parameter("domain", as_string, required=True, predicates=(non_empty(),)),
            Parameter("type", as_string, required=True, predicates=(_record_type,)),
            Parameter("nameserver", as_string, predicates=(ip_address(),)),
            Parameter("state", as_string, predicates=(one_of("present", "absent"),)),
            Parameter("value", as_string),
        )
    )

    @classmethod
    def cross_check(
        cls, values: Mapping[str, object], table: RawTable, errors: ParameterErrors
    ) -> None:
        state = values.get("state", "present")
        if state == "absent" and "value" in table:
            errors.conflict("value", "state", "absent")
        elif state == "present" and "value" not in table:
            errors.missing("value")

    @property
    def record_type(self) -> str:
        return str(self.spec.params["type"]).upper()

    def argv(self, default_nameserver: str | None = None) -> tuple[str, ...]:
        argv = ["dig", "+short"]
        nameserver = self.spec.get("nameserver") or default_nameserver
        if nameserver is not None:
            argv.append(f"@{nameserver}")
        argv.extend(("-t", self.record_type, str(self.spec.params["domain"])))
        return tuple(argv)

    def describe(self) -> str:
        text = f"DNS '{self.record_type}' record for '{self.spec.params['domain']}'"
        if self.spec.get("state", "present") == "absent":
            text += " is missing"
        else:
            text += f" exists with value '{self.spec.get('value')}'"
        nameserver = self.spec.get("nameserver")
        if nameserver is not None:
            text += f" (according to {nameserver})"
        return text

    def commands(self) -> tuple[str, ...]:
        return (" ".join(self.argv()),)

    async def run(self, context: CheckContext) -> list[Step]:
        result = await context.lookup(self.argv(context.options.get("dns.nameserver")))
        if not result.succeeded:
            detail = result.error or result.stderr.strip()
            return [Step.errored("DNS connection failed", (detail,) if detail else ())]

        records = [line.strip() for line in result.stdout_lines if line.strip()]
        if self.spec.get("state", "present") == "absent":
            if records:
                return [Step.failed("there is a record present")]
            return [Step.passed("there is no record present")]

        if not records:
            return [Step.failed("the record is missing")]
        if str(self.spec.get("value")) in records:
            return [Step.passed("there is a record present")]
        got = ", ".join(f"'{record}'" for record in records)
        return [Step.failed(f"the record is different, got [{got}] instead")]


@register_check()
class HttpCheck(Check):
    """One HTTP request and assertions about its response."""

    check_type = "http"
    schema = ParameterSchema(
        (
            Parameter("url", as_string, required=True, predicates=(non_empty(),)),
            Parameter("headers", as_string_map),
            Parameter("status", as_integer, predicates=(in_range(100, 999),)),
            Parameter("server", as_string),
            Parameter("encoding", as_string, predicates=(non_empty(),)),
            Parameter("content_type", as_string, predicates=(non_empty(), _content_type)),
            Parameter("redirect_to", as_string, predicates=(non_empty(),)),
            Parameter("body", as_contents),
            Parameter("also", as_string_map),
        )
    )

    @property
    def url(self) -> str:
        return str(self.spec.params["url"])

    def describe(self) -> str:
        clauses: list[str] = []
        if "status" in self.spec.params:
            clauses.append(f"has status '{self.spec.params['status']}'")
        if "content_type" in self.spec.params:
            clauses.append(f"has content type '{self.spec.params['content_type']}'")
        if "redirect_to" in self.spec.params:
            clauses.append(f"redirects to '{self.spec.params['redirect_to']}'")
        if "server" in self.spec.params:
            clauses.append(f"has server '{self.spec.params['server']}'")
        if "encoding" in self.spec.params:
            clauses.append(f"has encoding '{self.spec.params['encoding']}'")
        body = self.spec.get("body")
        if isinstance(body, ContentsMatcher):
            clauses.append(body.describe("body"))
        if not clauses:
            clauses.append("succeeds")
        return f"HTTP request to '{self.url}' " + ", ".join(clauses)

    def request_headers(self) -> dict[str, str]:
        headers = {"User-Agent": HTTP_USER_AGENT}
        extra = self.spec.get("headers")
        if isinstance(extra, Mapping):
            headers.update(extra)
        encoding = self.spec.get("encoding")
        if encoding is not None:
            headers["Accept-Encoding"] = str(encoding)
        return headers

    async def run(self, context: CheckContext) -> list[Step]:
        try:
            async with httpx.AsyncClient(
                follow_redirects=False,
                timeout=HTTP_TIMEOUT_SECONDS,
                transport=context.http_transport,
            ) as client:
                response = await client.get(self.url, headers=self.request_headers())
                body = await response.aread()
        except httpx.HTTPError as exc:
            logger.debug("http_request_failed", url=self.url, error=str(exc))
            return [Step.failed("HTTP connection failed", (str(exc),))]

        steps = [Step.passed("HTTP connection succeeded")]
        params = self.spec.params

        if "status" in params:
            if response.status_code == params["status"]:
                steps.append(Step.passed("HTTP status matches"))
            else:
                steps.append(Step.failed(f"HTTP status is '{response.status_code}'"))
        if "content_type" in params:
            steps.append(_content_type_step(str(params["content_type"]), response.headers))
        if "redirect_to" in params:
            steps.append(
                _header_step(
                    response.headers, "Location", str(params["redirect_to"]), "Location header"
                )
            )
        if "server" in params:
            steps.append(
                _header_step(response.headers, "Server", str(params["server"]), "Server header")
            )
        if "encoding" in params:
            steps.append(
                _header_step(
                    response.headers,
                    "Content-Encoding",
                    str(params["encoding"]),
                    "Content-Encoding header",
                )
            )
        body_matcher = params.get("body")
        if isinstance(body_matcher, ContentsMatcher):
            steps.append(
                await body_matcher.evaluate(body, "body", base=context.working_directory)
            )

        also = params.get("also")
        if isinstance(also, Mapping):
            for header, expected in also.items():
                actual = response.headers.get(header)
                if actual is None:
                    steps.append(Step.failed(f"HTTP header '{header}' was missing"))
                elif actual == expected:
                    steps.append(Step.passed(f"HTTP header '{header}' matches"))
                else:
                    steps.append(Step.failed(f"HTTP header '{header}' was '{actual}'"))
        return steps


def _header_step(headers: httpx.Headers, name: str, expected: str, label: str) -> Step:
    actual = headers.get(name)
    if actual is None:
        return Step.failed(f"{label} is missing")
    if actual == expected:
        return Step.passed(f"{label} matches")
    return Step.failed(f"{label} is '{actual}'")


def _content_type_step(expected: str, headers: httpx.Headers) -> Step:
    actual = headers.get("Content-Type")
    if actual is None:
        return Step.failed("Content-Type header is missing")

    alternatives = _CONTENT_CLASSES.get(expected)
    if alternatives is None:
        if actual == expected:
            return Step.passed("Content-Type matches")
        return Step.failed(f"Content-Type is '{actual}'")

    parsed = _parse_mime(actual)
    if parsed is None:
        return Step.failed(f"Content-Type '{actual}' is not a valid MIME type")
    if parsed in alternatives:
        return Step.passed("Content-Type matches")
    return Step.failed(f"Content-Type is '{actual}'")


def _parse_mime(value: str) -> tuple[str, str, str | None] | None:
    essence = value.split(";", 1)[0].strip().lower()
    main, sep, subtype = essence.partition("/")
    if not sep or not main or not subtype:
        return None
    subtype, plus, suffix = subtype.partition("+")
    return (main, subtype, suffix if plus else None)


__all__ = ["DnsCheck", "HttpCheck", "PingCheck", "TcpCheck", "UdpCheck"]
