"""Solana JSON-RPC client returning parsed transactions."""

from __future__ import annotations

from typing import Any

import httpx

from solgate.config import SolanaSettings
from solgate.domain.models import ParsedInstruction, ParsedTransaction
from solgate.logging import logger
from solgate.services.exceptions import ChainClientError
from solgate.utils.retry import retry_async

LAMPORTS_PER_SOL = 1_000_000_000


class SolanaClient:
    """Fetch transactions through ``getTransaction`` with ``jsonParsed`` encoding."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: SolanaSettings | None = None,
    ) -> None:
        self._client = http_client
        self._settings = settings or SolanaSettings()
        self._request_id = 0

    async def fetch_transaction(self, signature: str) -> ParsedTransaction | None:
        """Return the parsed transaction, or ``None`` if unknown, unconfirmed or timed out."""

        params = [
            signature,
            {
                "encoding": "jsonParsed",
                "commitment": self._settings.commitment,
                "maxSupportedTransactionVersion": 0,
            },
        ]
        try:
            result = await self._call("getTransaction", params)
        except httpx.TimeoutException as exc:
            logger.warning("solana_rpc_timeout", signature=signature, error=str(exc))
            return None
        if result is None:
            return None
        return self._parse_transaction(signature, result)

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

        async def _request():
            response = await self._client.post(
                str(self._settings.rpc_url),
                json=payload,
                timeout=self._settings.request_timeout_seconds,
            )
            response.raise_for_status()
            return response

        try:
            response = await retry_async(
                _request,
                max_attempts=3,
                base_delay=0.5,
                retry_on=(httpx.TransportError,),
                logger=logger,
                operation_name=f"solana_{method}",
            )
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code if exc.response is not None else "unknown"
            raise ChainClientError(f"Solana RPC {method} failed ({status_code}).") from exc
        except httpx.TimeoutException:
            raise
        except httpx.RequestError as exc:
            raise ChainClientError(f"Solana RPC {method} failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise ChainClientError(f"Solana RPC {method} returned invalid JSON.") from exc
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ChainClientError(f"Solana RPC {method} error: {message}")
        return data.get("result")

    @staticmethod
    def _parse_transaction(signature: str, result: dict[str, Any]) -> ParsedTransaction:
        meta = result.get("meta") or {}
        message = (result.get("transaction") or {}).get("message") or {}
        instructions = [
            ParsedInstruction(
                program_id=str(raw.get("programId", "")),
                program=raw.get("program"),
                parsed=raw.get("parsed"),
            )
            for raw in message.get("instructions") or []
        ]
        return ParsedTransaction(
            signature=signature,
            slot=result.get("slot"),
            error=meta.get("err"),
            instructions=instructions,
            log_messages=list(meta.get("logMessages") or []),
        )


__all__ = ["LAMPORTS_PER_SOL", "SolanaClient"]
