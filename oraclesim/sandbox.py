"""
Capability sandbox for request scripts.

A request's source is a Python statement block that ends in a top-level
`return`, e.g.:

    response = httpRequest("https://api.example.com/price", headers={"authorization": secret("apiKey")})
    if response.failed:
        raise Exception("api request failed")
    return encodeUint(response.body["price"])

The block is parsed, validated and compiled as the body of a function, then
run with a restricted builtins table. The only things a script can reach are
the injected capabilities: httpRequest, httpRequests, secret, args,
encodeUint, encodeString (and print, which goes to the log). No imports, no
dunder or private attribute access, no file system or environment.

httpRequests takes a list of requests and runs them concurrently on a bounded
thread pool, returning responses in request order:

    prices = httpRequests(["https://a.test/price", {"url": "https://b.test/price", "method": "POST"}])

Not a hardened sandbox: it keeps honest scripts inside the capability
surface, it does not contain hostile ones.
"""

import ast
import builtins
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import requests

from oraclesim.encoding import encode_string, encode_uint, finalize_result
from oraclesim.errors import EncodingMismatch, ExecutionError
from oraclesim.schema import CodeLanguage, CodeLocation, ComputeRequest, EncodingScheme, HttpResponse
from oraclesim.secrets_bundle import SecretsBundle

logger = logging.getLogger(__name__)

SAFE_BUILTINS = (
    "abs", "all", "any", "bool", "bytearray", "bytes", "chr", "dict", "divmod",
    "enumerate", "filter", "float", "format", "frozenset", "hex", "int", "isinstance",
    "iter", "len", "list", "map", "max", "min", "next", "ord", "pow", "range", "repr",
    "reversed", "round", "set", "slice", "sorted", "str", "sum", "tuple", "zip",
    "ArithmeticError", "Exception", "IndexError", "KeyError", "LookupError",
    "RuntimeError", "StopIteration", "TypeError", "ValueError", "ZeroDivisionError",
)

CAPABILITIES = ("httpRequest", "httpRequests", "secret", "args", "encodeUint", "encodeString", "print")

DEFAULT_HTTP_TIMEOUT = 20.0
DEFAULT_MAX_CONCURRENT_REQUESTS = 8

_REQUEST_KEYS = {"url", "method", "headers", "body", "params"}

# Transport signature matches requests.request(method, url, **kwargs).
HttpTransport = Callable[..., Any]


class _ScriptValidator(ast.NodeVisitor):
    """Rejects constructs that would reach outside the capability surface."""

    def _reject(self, node: ast.AST, what: str) -> None:
        line = getattr(node, "lineno", "?")
        raise ExecutionError(f"Script rejected at line {line}: {what} is not allowed")

    def visit_Import(self, node: ast.Import) -> None:
        self._reject(node, "import")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self._reject(node, "import")

    def visit_Global(self, node: ast.Global) -> None:
        self._reject(node, "global")

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self._reject(node, "nonlocal")

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._reject(node, "async def")

    def visit_Await(self, node: ast.Await) -> None:
        self._reject(node, "await")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_"):
            self._reject(node, f"attribute {node.attr!r}")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("_"):
            self._reject(node, f"name {node.id!r}")

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        if node.name.startswith("_"):
            self._reject(node, f"function name {node.name!r}")
        self.generic_visit(node)

    def visit_arg(self, node: ast.arg) -> None:
        if node.arg.startswith("_"):
            self._reject(node, f"argument {node.arg!r}")
        self.generic_visit(node)


def compile_script(source: str, filename: str = "<request>"):
    """Parse, validate and compile a script block into a module defining main()."""
    try:
        body = ast.parse(source, filename=filename, mode="exec").body
    except SyntaxError as e:
        raise ExecutionError(f"SyntaxError: {e}", thrown=e) from e
    validator = _ScriptValidator()
    for stmt in body:
        validator.visit(stmt)

    module = ast.parse("def main():\n    pass\n", filename=filename)
    module.body[0].body = body or [ast.Pass()]
    ast.fix_missing_locations(module)
    try:
        return compile(module, filename, "exec")
    except SyntaxError as e:
        raise ExecutionError(f"SyntaxError: {e}", thrown=e) from e


def _safe_builtins() -> Dict[str, Any]:
    return {name: getattr(builtins, name) for name in SAFE_BUILTINS}


def _request_kwargs(item: Any) -> Dict[str, Any]:
    if isinstance(item, str):
        return {"url": item}
    if not isinstance(item, Mapping) or "url" not in item:
        raise ValueError("httpRequests items must be a URL or a mapping with a 'url' key")
    unknown = set(item) - _REQUEST_KEYS
    if unknown:
        raise ValueError(f"httpRequests item has unknown keys: {sorted(unknown)}")
    return dict(item)


def _response_body(response: Any) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class Sandbox:
    """
    Runs request scripts with an explicit capability set.

    One Sandbox is shared by all in-flight requests; every execution gets its own
    globals, args copy and secrets bundle.
    """

    def __init__(
        self,
        scheme: EncodingScheme = EncodingScheme.PACKED,
        http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT,
        transport: Optional[HttpTransport] = None,
        max_result_bytes: Optional[int] = None,
        max_concurrent_requests: int = DEFAULT_MAX_CONCURRENT_REQUESTS,
    ):
        self.scheme = EncodingScheme(scheme)
        self.http_timeout_seconds = http_timeout_seconds
        self.max_result_bytes = max_result_bytes
        self.max_concurrent_requests = max(1, int(max_concurrent_requests))
        self._transport = transport or requests.request

    def http_request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> HttpResponse:
        """Network call for scripts. Never raises: failures come back with failed=True."""
        kwargs: Dict[str, Any] = {"headers": dict(headers or {}), "timeout": self.http_timeout_seconds}
        if params:
            kwargs["params"] = dict(params)
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        elif body is not None:
            kwargs["data"] = body if isinstance(body, (str, bytes)) else str(body)
        try:
            response = self._transport(str(method).upper(), url, **kwargs)
        except (requests.RequestException, ValueError, OSError) as e:
            logger.debug("httpRequest %s %s failed: %s", method, url, type(e).__name__)
            return HttpResponse(failed=True, error=f"{type(e).__name__}: {e}")
        status = int(response.status_code)
        payload = _response_body(response)
        if not 200 <= status < 300:
            return HttpResponse(failed=True, body=payload, status=status, error=f"HTTP {status}")
        return HttpResponse(failed=False, body=payload, status=status)

    def http_requests(self, items: Sequence[Any]) -> List[HttpResponse]:
        """
        Run several httpRequest calls concurrently.

        Each item is a URL string or a mapping of httpRequest keyword arguments
        (url, method, headers, body, params). At most max_concurrent_requests
        run at once. Responses come back in item order; like httpRequest, a
        failed call is a response with failed=True, not an exception.

        Raises:
            ValueError: an item is neither a string nor a mapping with a url.
        """
        calls = [_request_kwargs(item) for item in items]
        if not calls:
            return []
        workers = min(len(calls), self.max_concurrent_requests)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="oraclesim-http") as pool:
            futures = [pool.submit(self.http_request, **kwargs) for kwargs in calls]
            return [f.result() for f in futures]

    def capabilities(self, request: ComputeRequest, secrets: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """The names injected into one execution's globals."""
        bundle = secrets if isinstance(secrets, SecretsBundle) else SecretsBundle(secrets)
        tag = request.request_id_hex

        def secret(name: str) -> str:
            if name not in bundle:
                raise KeyError(f"secret {name!r} was not provided")
            return bundle[name]

        def encode_string_capability(value: str):
            return encode_string(value, self.scheme)

        def script_print(*values: Any, sep: str = " ") -> None:
            logger.debug("[%s] %s", tag, sep.join(str(v) for v in values))

        return {
            "httpRequest": self.http_request,
            "httpRequests": self.http_requests,
            "secret": secret,
            "args": list(request.args),
            "encodeUint": encode_uint,
            "encodeString": encode_string_capability,
            "print": script_print,
        }

    def run(self, request: ComputeRequest, secrets: Optional[Mapping[str, str]] = None) -> Any:
        """
        Execute the request's script and return its raw final value.

        Raises:
            ExecutionError: unsupported location/language, rejected script, or the script raised.
        """
        if request.code_location != CodeLocation.INLINE:
            raise ExecutionError(f"Unsupported code location {request.code_location}; only inline source runs here")
        if request.language != CodeLanguage.SCRIPT:
            raise ExecutionError(f"Unsupported language {request.language}")

        code = compile_script(request.source, filename=f"<request {request.request_id_hex}>")
        env: Dict[str, Any] = {"__builtins__": _safe_builtins()}
        env.update(self.capabilities(request, secrets))
        try:
            exec(code, env)
            return env["main"]()
        except Exception as e:
            raise ExecutionError(f"Script raised {type(e).__name__}: {e}", thrown=e) from e

    def encode(self, value: Any) -> bytes:
        """Validate the script's final value as result bytes."""
        result = finalize_result(value)
        if self.max_result_bytes is not None and len(result) > self.max_result_bytes:
            raise EncodingMismatch(f"Result is {len(result)} bytes; limit is {self.max_result_bytes}")
        return result

    def execute(self, request: ComputeRequest, secrets: Optional[Mapping[str, str]] = None) -> bytes:
        """run() then encode()."""
        return self.encode(self.run(request, secrets))
