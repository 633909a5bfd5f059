import pytest

from agri_buddy.models.json_repair import extract_json_block, fix_json_string, parse_json_loose
from agri_buddy.models.llm_client import LLMClient, LLMResponse, Message


@pytest.mark.asyncio
async def test_chat_with_json_repairs_single_quotes_and_trailing_commas() -> None:
    client = LLMClient()

    async def fake_chat(messages: list[Message], temperature: float = 0.2, **kwargs):
        return LLMResponse(
            content="{'reply': 'はい', 'work_log': '灌水',}",
            finish_reason="stop",
            model="test",
        )

    # Monkeypatch instance method
    client.chat = fake_chat  # type: ignore[assignment]

    data = await client.chat_with_json(messages=[Message(role="user", content="灌水した")])
    assert data == {"reply": "はい", "work_log": "灌水"}


@pytest.mark.asyncio
async def test_chat_with_json_repairs_unquoted_keys_and_fenced_json() -> None:
    client = LLMClient()

    async def fake_chat(messages: list[Message], temperature: float = 0.2, **kwargs):
        return LLMResponse(
            content="""了解です。
            ```json
            {max_temp: 28, mentor_mode: false, fertilizer: null,}
            ```""",
            finish_reason="stop",
            model="test",
        )

    client.chat = fake_chat  # type: ignore[assignment]

    data = await client.chat_with_json(messages=[Message(role="user", content="28度")])
    assert data == {"max_temp": 28, "mentor_mode": False, "fertilizer": None}


@pytest.mark.asyncio
async def test_chat_with_json_unrepairable_output_is_empty_dict() -> None:
    client = LLMClient()

    async def fake_chat(messages: list[Message], temperature: float = 0.2, **kwargs):
        return LLMResponse(content="すみません、わかりません", model="test")

    client.chat = fake_chat  # type: ignore[assignment]

    assert await client.chat_with_json(messages=[Message(role="user", content="?")]) == {}


def test_extract_json_block_ignores_braces_inside_strings() -> None:
    text = 'prefix {"a": "x}y", "b": [1, 2]} suffix'
    assert extract_json_block(text) == '{"a": "x}y", "b": [1, 2]}'


def test_python_literals_are_mapped() -> None:
    assert fix_json_string("{'a': None, 'b': True}") == '{"a": null, "b": true}'
    assert parse_json_loose("[1, 2,]") == [1, 2]
    assert parse_json_loose("") is None
    assert parse_json_loose("not json") is None
