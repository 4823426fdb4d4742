import asyncio
import json

import httpx
import pytest

from agent_trader.ai.llm_client import ChatMessage, OpenRouterClient
from agent_trader.ai.reports import RoleKind
from agent_trader.config.settings import InferenceSettings
from agent_trader.data.market_data import YahooFinanceProvider
from agent_trader.utils.exceptions import (
    AIBudgetExceededError,
    APIAuthenticationError,
    DataFetchError,
    DataMissingError,
)


def completion_payload(content, cost=None):
    usage = {"prompt_tokens": 1000, "completion_tokens": 200, "total_tokens": 1200}
    if cost is not None:
        usage["cost"] = cost
    return {
        "id": "gen-1",
        "model": "deepseek/deepseek-chat-v3.1",
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": usage,
    }


def test_invoke_model_returns_content_and_tracks_usage():
    requests = []

    def handler(request):
        requests.append(json.loads(request.content))
        return httpx.Response(200, json=completion_payload('{"action": "hold"}'))

    async def run():
        async with OpenRouterClient(InferenceSettings(api_key="sk-test"), httpx.MockTransport(handler)) as client:
            content = await client.invoke_model(RoleKind.TRADER, [ChatMessage(role="user", content="hi")])
            return content, client.usage

    content, usage = asyncio.run(run())
    assert content == '{"action": "hold"}'
    assert requests[0]["model"] == "deepseek/deepseek-chat-v3.1"
    assert requests[0]["temperature"] == 0.4
    assert requests[0]["response_format"] == {"type": "json_object"}
    assert usage.requests_by_role == {"trader": 1}
    assert usage.total_tokens == 1200
    assert usage.total_cost_usd == pytest.approx(0.0002 * 1 + 0.0008 * 0.2)


def test_unauthorized_raises_authentication_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "bad key"}))

    async def run():
        async with OpenRouterClient(InferenceSettings(), transport) as client:
            await client.invoke_model(RoleKind.BULL, [ChatMessage(role="user", content="hi")])

    with pytest.raises(APIAuthenticationError):
        asyncio.run(run())


def test_daily_budget_stops_requests():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=completion_payload("{}", cost=0.5))

    async def run():
        settings = InferenceSettings(daily_budget=0.25)
        async with OpenRouterClient(settings, httpx.MockTransport(handler)) as client:
            messages = [ChatMessage(role="user", content="hi")]
            await client.chat_completion(messages)
            with pytest.raises(AIBudgetExceededError):
                await client.chat_completion(messages)

    asyncio.run(run())
    assert len(calls) == 1


def chart_payload(count=61, gap_at=10):
    timestamps = [1767225600 + i * 86400 for i in range(count)]
    closes = [100.0 + i * 0.5 for i in range(count)]
    closes[gap_at] = None
    return {"chart": {"result": [{
        "meta": {"regularMarketPrice": 131.25},
        "timestamp": timestamps,
        "indicators": {"quote": [{
            "open": [c and c - 0.2 for c in closes],
            "high": [c and c + 1.0 for c in closes],
            "low": [c and c - 1.0 for c in closes],
            "close": closes,
            "volume": [1000] * count,
        }]},
    }], "error": None}}


def test_yahoo_bars_with_indicators():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=chart_payload())

    async def run():
        async with YahooFinanceProvider(transport=httpx.MockTransport(handler)) as provider:
            bundle = await provider.get_data_with_indicators("aapl", period="6mo")
            price = await provider.get_current_price("aapl")
            return bundle, price

    bundle, price = asyncio.run(run())
    assert seen[0].url.path == "/v8/finance/chart/AAPL"
    assert seen[0].url.params["range"] == "6mo"
    assert bundle.symbol == "AAPL"
    assert len(bundle.bars) == 60
    assert bundle.current_price == pytest.approx(130.0)
    assert bundle.indicators.rsi == 100.0
    assert price == 131.25


@pytest.mark.parametrize("response, error", [
    (httpx.Response(404, json={}), DataFetchError),
    (httpx.Response(200, json={"chart": {"result": None, "error": {"code": "Not Found"}}}), DataFetchError),
    (httpx.Response(200, json={"chart": {"result": [], "error": None}}), DataMissingError),
])
def test_yahoo_errors(response, error):
    async def run():
        async with YahooFinanceProvider(transport=httpx.MockTransport(lambda request: response)) as provider:
            await provider.get_bars("MSFT")

    with pytest.raises(error):
        asyncio.run(run())
