"""
Jupiter API client for route quotes and swap instructions.
"""
import httpx
import time
import asyncio
from typing import Dict, List, Optional, Any, Tuple
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Token bucket rate limiter for Jupiter API requests.

    Ensures strict rate limiting: 1 request per second by default.
    """

    def __init__(self, requests_per_second: float = 1.0):
        """
        Initialize rate limiter.

        Args:
            requests_per_second: Maximum requests per second (0 disables limiting)
        """
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Wait until a request can be made (respecting rate limit)."""
        async with self._lock:
            current_time = time.monotonic()
            time_since_last = current_time - self._last_request_time

            if time_since_last < self.min_interval:
                wait_time = self.min_interval - time_since_last
                await asyncio.sleep(wait_time)

            self._last_request_time = time.monotonic()


@dataclass
class JupiterQuote:
    """Quote (route) returned by Jupiter for one swap leg."""
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    price_impact_pct: float
    route_plan: List[Dict[str, Any]]
    context_slot: Optional[int] = None
    time_taken: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict)  # Verbatim quote response


@dataclass
class SwapAccountMeta:
    """Account metadata for swap instruction."""
    pubkey: str
    is_signer: bool
    is_writable: bool


@dataclass
class SwapInstruction:
    """Single instruction from Jupiter API (data is base64)."""
    program_id: str
    accounts: List[SwapAccountMeta]
    data: str


@dataclass
class JupiterSwapInstructionsResponse:
    """Swap instructions for one leg, as returned by /swap-instructions."""
    compute_budget_instructions: List[SwapInstruction]
    setup_instructions: List[SwapInstruction]
    swap_instruction: SwapInstruction
    cleanup_instruction: Optional[SwapInstruction]
    other_instructions: List[SwapInstruction]
    address_lookup_tables: List[str]  # ALT addresses
    last_valid_block_height: int = 0

    def instructions(self) -> List[SwapInstruction]:
        """All instructions of the leg, in the order Jupiter would place them in a transaction."""
        ordered = list(self.compute_budget_instructions)
        ordered.extend(self.setup_instructions)
        ordered.append(self.swap_instruction)
        if self.cleanup_instruction:
            ordered.append(self.cleanup_instruction)
        ordered.extend(self.other_instructions)
        return ordered


class JupiterClient:
    """Client for Jupiter Aggregator API with deterministic endpoint fallback."""

    # Public endpoints (no authentication required) - ordered by preference
    PUBLIC_ENDPOINTS = [
        "https://lite-api.jup.ag",
    ]

    # Authenticated endpoints (require API key) - ordered by preference
    AUTH_ENDPOINTS = [
        "https://api.jup.ag",
    ]

    QUOTE_PATH = "/swap/v1/quote"
    SWAP_INSTRUCTIONS_PATH = "/swap/v1/swap-instructions"

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        requests_per_second: float = 1.0,
        max_retries_on_429: int = 3,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0
    ):
        """
        Initialize Jupiter API client.

        Args:
            api_url: Explicit API URL (overrides fallback). If None, uses fallback list.
            api_key: Jupiter API key, sent as x-api-key header.
            timeout: Request timeout in seconds.
            requests_per_second: Rate limit for Jupiter API requests
            max_retries_on_429: Maximum retries on 429 rate limit error
            backoff_base_seconds: Base backoff time for 429 retries
            backoff_max_seconds: Maximum backoff time for 429 retries
        """
        if api_url:
            # Explicit URL provided - use it directly (no fallback)
            self.api_url = api_url.rstrip('/')
            self.fallback_endpoints = []
        else:
            self.api_url = None
            if api_key:
                self.fallback_endpoints = self.AUTH_ENDPOINTS.copy()
            else:
                self.fallback_endpoints = self.PUBLIC_ENDPOINTS.copy()

        self.api_key = api_key
        self.timeout = timeout

        self.rate_limiter = RateLimiter(requests_per_second=requests_per_second)
        self.max_retries_on_429 = max_retries_on_429
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

        headers = {}
        if api_key:
            # Jupiter API expects API key in x-api-key header, not Authorization
            headers["x-api-key"] = api_key

        self.client = httpx.AsyncClient(timeout=timeout, headers=headers)
        self._tried_endpoints = set()  # Endpoints that failed permanently (401 etc.)
        self._working_endpoint = None

    def _endpoints_to_try(self) -> List[str]:
        """Endpoints in order: working endpoint, explicit URL, untried fallbacks."""
        endpoints = []
        if self._working_endpoint:
            endpoints.append(self._working_endpoint)
        if self.api_url and self.api_url not in endpoints:
            endpoints.append(self.api_url)
        for endpoint in self.fallback_endpoints:
            if endpoint not in endpoints and endpoint not in self._tried_endpoints:
                endpoints.append(endpoint)
        return endpoints

    def _backoff_seconds(self, response: httpx.Response, attempt: int) -> float:
        """Wait time before retrying a 429, honouring Retry-After."""
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                pass
        return min(self.backoff_base_seconds * (2 ** attempt), self.backoff_max_seconds)

    async def _request(
        self,
        method: str,
        endpoint: str,
        path: str,
        **kwargs
    ) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        """
        Perform one API call against an endpoint with 429 retries.

        Returns:
            (data, error_type) where error_type is:
            - None: success
            - 'dns': DNS/connection error (can try next endpoint)
            - '401': Unauthorized (endpoint marked as tried)
            - '404': No route (valid answer, not a transport failure)
            - '429': Rate limit persisted after retries
            - 'other': Other error
        """
        url = f"{endpoint.rstrip('/')}{path}"

        for attempt in range(self.max_retries_on_429 + 1):
            await self.rate_limiter.acquire()
            try:
                response = await self.client.request(method, url, **kwargs)
                response.raise_for_status()
                self._working_endpoint = endpoint
                return response.json(), None

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                if status_code == 429:
                    if attempt < self.max_retries_on_429:
                        wait_time = self._backoff_seconds(e.response, attempt)
                        logger.warning(
                            f"Rate limit exceeded (429) from {url}, "
                            f"retrying in {wait_time:.1f}s (attempt {attempt + 1}/{self.max_retries_on_429})"
                        )
                        await asyncio.sleep(wait_time)
                        continue
                    logger.error(f"Rate limit exceeded (429) from {url} after {self.max_retries_on_429} retries")
                    return None, '429'

                if status_code == 401:
                    self._tried_endpoints.add(endpoint)
                    if self.api_key:
                        logger.error(f"Endpoint {endpoint} returned 401 even with API key. Key may be invalid.")
                    else:
                        logger.warning(f"Endpoint {endpoint} requires authentication (401). No API key provided.")
                    return None, '401'

                if status_code in (400, 404):
                    # No route for this pair/amount - a valid answer, endpoint stays usable
                    logger.debug(f"No route from {url} ({status_code}): {e.response.text}")
                    return None, '404'

                logger.warning(f"Jupiter request failed from {url}: {status_code} - {e.response.text}")
                return None, 'other'

            except (httpx.ConnectError, httpx.ConnectTimeout, httpx.NetworkError) as e:
                logger.debug(f"Connection error for {endpoint} (DNS/network): {e}. Will try next endpoint if available.")
                return None, 'dns'

            except httpx.TimeoutException as e:
                logger.warning(f"Timeout from {url}: {e}")
                return None, 'dns'

            except httpx.HTTPError as e:
                # Remaining transport errors (server disconnect, proxy, protocol)
                logger.warning(f"Transport error from {url}: {type(e).__name__}: {e}")
                return None, 'dns'

            except ValueError as e:
                logger.error(f"Invalid JSON from {url}: {e}")
                return None, 'other'

        return None, 'other'

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int = 50,
        force_live: bool = False,
        only_direct_routes: bool = False,
        restrict_intermediate_tokens: bool = False
    ) -> Optional[JupiterQuote]:
        """
        Get the best route for swapping `amount` of input_mint into output_mint.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Amount in minor units
            slippage_bps: Slippage in basis points (1 bps = 0.01%)
            force_live: Bypass any intermediate HTTP caches
            only_direct_routes: Only return direct routes
            restrict_intermediate_tokens: Restrict intermediate hops to liquid tokens

        Returns:
            JupiterQuote, or None if there is no route or every endpoint failed
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": slippage_bps,
            "onlyDirectRoutes": str(only_direct_routes).lower(),
            "restrictIntermediateTokens": str(restrict_intermediate_tokens).lower()
        }
        headers = {"Cache-Control": "no-cache"} if force_live else None

        endpoints_to_try = self._endpoints_to_try()
        if not endpoints_to_try:
            logger.error("No Jupiter API endpoints available to try")
            return None

        for endpoint in endpoints_to_try:
            start_time = time.time()
            data, error_type = await self._request(
                "GET", endpoint, self.QUOTE_PATH, params=params, headers=headers
            )

            if data is not None:
                try:
                    quote = JupiterQuote(
                        input_mint=data.get("inputMint", input_mint),
                        output_mint=data.get("outputMint", output_mint),
                        in_amount=int(data.get("inAmount", amount)),
                        out_amount=int(data.get("outAmount", 0)),
                        price_impact_pct=float(data.get("priceImpactPct") or 0),
                        route_plan=data.get("routePlan", []),
                        context_slot=data.get("contextSlot"),
                        time_taken=time.time() - start_time,
                        raw=data
                    )
                except (ValueError, TypeError, AttributeError) as e:
                    logger.warning(f"Malformed quote from {endpoint}: {e}")
                    return None
                logger.debug(
                    f"Quote from {endpoint}: {input_mint[:8]}... -> {output_mint[:8]}... "
                    f"in={quote.in_amount} out={quote.out_amount} impact={quote.price_impact_pct:.2f}%"
                )
                return quote

            if error_type == '404':
                # The aggregator answered: there is no route. Other hosts share the same liquidity view.
                return None

        logger.warning(
            f"All Jupiter quote endpoints exhausted ({len(endpoints_to_try)} tried) "
            f"for {input_mint[:8]}... -> {output_mint[:8]}..."
        )
        return None

    def _quote_payload(self, quote: JupiterQuote) -> Dict[str, Any]:
        """Quote response to post back; the verbatim response when available."""
        if quote.raw:
            return quote.raw
        return {
            "inputMint": quote.input_mint,
            "inAmount": str(quote.in_amount),
            "outputMint": quote.output_mint,
            "outAmount": str(quote.out_amount),
            "otherAmountThreshold": str(quote.out_amount),
            "swapMode": "ExactIn",
            "priceImpactPct": str(quote.price_impact_pct),
            "routePlan": quote.route_plan
        }

    def _parse_accounts(self, accounts_data: List[Any]) -> List[SwapAccountMeta]:
        """
        Parse accounts from Jupiter API response.

        Raises:
            ValueError: If an account entry lacks signer/writable metadata
        """
        parsed_accounts = []
        for account_data in accounts_data or []:
            if not isinstance(account_data, dict):
                raise ValueError(f"Unexpected account format: {type(account_data)}")
            parsed_accounts.append(SwapAccountMeta(
                pubkey=account_data.get("pubkey", ""),
                is_signer=bool(account_data.get("isSigner", False)),
                is_writable=bool(account_data.get("isWritable", False))
            ))
        return parsed_accounts

    def _parse_instruction(self, instr_data: Dict[str, Any]) -> SwapInstruction:
        return SwapInstruction(
            program_id=instr_data.get("programId", ""),
            accounts=self._parse_accounts(instr_data.get("accounts", [])),
            data=instr_data.get("data", "")
        )

    def _parse_lookup_tables(self, data: Dict[str, Any]) -> List[str]:
        raw_alts = data.get("addressLookupTableAddresses") or data.get("addressLookupTables") or []
        address_lookup_tables: List[str] = []
        for x in raw_alts:
            if isinstance(x, str):
                address_lookup_tables.append(x)
            elif isinstance(x, dict):
                for key in ("accountKey", "address", "key"):
                    if isinstance(x.get(key), str):
                        address_lookup_tables.append(x[key])
                        break
        return address_lookup_tables

    def _parse_swap_instructions(self, data: Dict[str, Any]) -> JupiterSwapInstructionsResponse:
        cleanup = data.get("cleanupInstruction")
        return JupiterSwapInstructionsResponse(
            compute_budget_instructions=[
                self._parse_instruction(i) for i in data.get("computeBudgetInstructions") or []
            ],
            setup_instructions=[
                self._parse_instruction(i) for i in data.get("setupInstructions") or []
            ],
            swap_instruction=self._parse_instruction(data["swapInstruction"]),
            cleanup_instruction=self._parse_instruction(cleanup) if cleanup else None,
            other_instructions=[
                self._parse_instruction(i) for i in data.get("otherInstructions") or []
            ],
            address_lookup_tables=self._parse_lookup_tables(data),
            last_valid_block_height=data.get("lastValidBlockHeight", 0)
        )

    async def get_swap_instructions(
        self,
        quote: JupiterQuote,
        user_public_key: str,
        compute_unit_price_micro_lamports: Optional[int] = None,
        wrap_and_unwrap_sol: bool = False
    ) -> Optional[JupiterSwapInstructionsResponse]:
        """
        Get the instruction set executing `quote` for user_public_key.

        Args:
            quote: JupiterQuote to execute
            user_public_key: User's public key (base58)
            compute_unit_price_micro_lamports: Optional priority fee rate
            wrap_and_unwrap_sol: Auto wrap/unwrap SOL

        Returns:
            JupiterSwapInstructionsResponse, or None if no endpoint could build it
        """
        payload: Dict[str, Any] = {
            "quoteResponse": self._quote_payload(quote),
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": wrap_and_unwrap_sol,
        }
        if compute_unit_price_micro_lamports is not None:
            payload["computeUnitPriceMicroLamports"] = compute_unit_price_micro_lamports

        endpoints_to_try = self._endpoints_to_try()
        if not endpoints_to_try:
            logger.error("No Jupiter API endpoint available for swap instructions")
            return None

        for endpoint in endpoints_to_try:
            data, error_type = await self._request(
                "POST", endpoint, self.SWAP_INSTRUCTIONS_PATH, json=payload
            )
            if data is None:
                continue

            if "swapInstruction" not in data:
                logger.warning(f"Unexpected response from {endpoint}: missing swapInstruction")
                continue

            try:
                response = self._parse_swap_instructions(data)
            except (ValueError, KeyError, TypeError) as e:
                logger.error(f"Malformed swap instructions from {endpoint}: {e}")
                return None

            logger.debug(
                f"Swap instructions OK via {endpoint}: "
                f"{len(response.compute_budget_instructions)} compute, "
                f"{len(response.setup_instructions)} setup, 1 swap, "
                f"{1 if response.cleanup_instruction else 0} cleanup, "
                f"{len(response.address_lookup_tables)} ALTs"
            )
            return response

        logger.error(f"All Jupiter endpoints failed for swap instructions ({len(endpoints_to_try)} tried)")
        return None

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
