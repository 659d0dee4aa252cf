import asyncio
import itertools
import logging
from typing import Any, Optional

import aiohttp

logger = logging.getLogger(__name__)


class ChainConnectionError(Exception):
    """The node could not be reached or did not answer with a usable JSON-RPC payload."""


class JsonRpcResponseError(Exception):
    """The node answered, but with a JSON-RPC error object."""

    def __init__(self, method: str, code: Any, message: str):
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code
        self.rpc_message = message


class JsonRpcClient:
    """Minimal JSON-RPC 2.0 client over aiohttp, shared by the EVM and Solana verifiers."""

    def __init__(self, url: str, timeout_seconds: float = 20):
        if not url:
            raise ValueError("JSON-RPC endpoint URL is required")
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._ids = itertools.count(1)

    async def call(self, method: str, params: Optional[list] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=payload) as response:
                    if response.status >= 400:
                        text_payload = await response.text()
                        raise ChainConnectionError(
                            f"RPC node error ({response.status}) on {method}: {text_payload[:200]}"
                        )
                    data = await response.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise ChainConnectionError(f"RPC node timed out on {method}") from exc
        except aiohttp.ClientError as exc:
            raise ChainConnectionError(f"RPC node unreachable on {method}: {exc}") from exc
        except ValueError as exc:
            raise ChainConnectionError(f"RPC node returned malformed JSON on {method}") from exc

        if not isinstance(data, dict):
            raise ChainConnectionError(f"RPC node returned unexpected payload on {method}")
        error = data.get("error")
        if error:
            if isinstance(error, dict):
                raise JsonRpcResponseError(method, error.get("code"), str(error.get("message")))
            raise JsonRpcResponseError(method, None, str(error))
        return data.get("result")
