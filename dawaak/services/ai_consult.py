import logging
import time

from fastapi import HTTPException
from openai import APIConnectionError, APIError, AuthenticationError, OpenAI, RateLimitError

from dawaak.core.config import get_openai_keys, settings

logger = logging.getLogger(__name__)
OPENAI_RETRY_WAIT = 1.5
OPENAI_RETRY_ONCE = (RateLimitError, APIConnectionError)

# One client per key (multi-key fallback)
_openai_clients: dict[str, OpenAI] = {}

# When a key is rejected or rate limited, the next one is tried
OPENAI_FALLBACK_EXCEPTIONS = (AuthenticationError, RateLimitError)

SYSTEM_PROMPT = (
    "أنت مساعد طبي في منصة دوائك المنزلي. قدّم معلومات صحية عامة ومبسطة، "
    "واذكر متى يجب مراجعة الطبيب. لا تقدّم تشخيصاً نهائياً ولا جرعات دوائية محددة."
)

LANG_INSTRUCTIONS = {
    "ar": "اكتب الرد كاملاً باللغة العربية.",
    "en": "Write the entire answer in English.",
}


def _get_client_for_key(key: str) -> OpenAI:
    if key not in _openai_clients:
        _openai_clients[key] = OpenAI(api_key=key, timeout=settings.openai_timeout)
    return _openai_clients[key]


def _raise_openai_http_error(exc: Exception) -> None:
    """Maps OpenAI failures to HTTP errors (503, not 401, so they are not mistaken for a session problem)."""
    if isinstance(exc, AuthenticationError):
        raise HTTPException(status_code=503, detail="AI service unavailable: check OPENAI_API_KEY.") from exc
    if isinstance(exc, RateLimitError):
        raise HTTPException(status_code=429, detail="AI service busy, please retry shortly.") from exc
    if isinstance(exc, APIConnectionError):
        raise HTTPException(status_code=503, detail="AI service unreachable.") from exc
    if isinstance(exc, APIError):
        raise HTTPException(status_code=502, detail="AI service error.") from exc
    raise HTTPException(status_code=500, detail="Unexpected server error.") from exc


def _openai_create_with_fallback(create_fn):
    """
    Calls create_fn(client); on AuthenticationError or RateLimitError moves on to
    the next key. Raises the HTTP form of the last error when every key fails.
    """
    keys = get_openai_keys()
    if not keys:
        raise HTTPException(status_code=503, detail="AI consultation is not configured.")
    last_exc: Exception | None = None
    for key in keys:
        try:
            return create_fn(_get_client_for_key(key))
        except OPENAI_FALLBACK_EXCEPTIONS as e:
            last_exc = e
            logger.warning("OpenAI key skipped (%s...), trying next: %s", key[:8], e)
    _raise_openai_http_error(last_exc)


def _openai_safe_call(create_fn):
    """One retry after OPENAI_RETRY_WAIT seconds on rate limit / connection errors."""
    try:
        return create_fn()
    except OPENAI_RETRY_ONCE as e:
        logger.warning("OpenAI retry after %s: %s", type(e).__name__, e)
        time.sleep(OPENAI_RETRY_WAIT)
        return create_fn()


def build_prompt(query: str, lang: str | None = None) -> str:
    instruction = LANG_INSTRUCTIONS.get(lang or "ar", LANG_INSTRUCTIONS["ar"])
    return f"{instruction}\n\nاستشارة المريض:\n{query.strip()}"


def run_consultation(query: str, lang: str | None = None) -> tuple[str, dict | None]:
    """Returns (answer text, token usage or None)."""
    prompt = build_prompt(query, lang)

    def _create(client: OpenAI):
        return _openai_safe_call(lambda: client.chat.completions.create(
            model=settings.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        ))

    try:
        response = _openai_create_with_fallback(_create)
    except HTTPException:
        raise
    except (APIConnectionError, APIError) as e:
        logger.exception("OpenAI API error in run_consultation: %s", e)
        _raise_openai_http_error(e)
    content = response.choices[0].message.content or ""
    usage = None
    if getattr(response, "usage", None):
        u = response.usage
        usage = {
            "prompt_tokens": getattr(u, "prompt_tokens", 0) or 0,
            "completion_tokens": getattr(u, "completion_tokens", 0) or 0,
        }
    return content, usage
