import asyncio

from automation_engine.flows import match_keyword_automations, match_triggers

from .utils import FakeStore, make_automation


def _keyword_automation(aid, keywords, **kw):
    return make_automation([], [], automation_id=aid, trigger_type="keyword", trigger_config={"keywords": keywords}, **kw)


def test_match_is_case_insensitive():
    store = FakeStore(automations=[
        _keyword_automation("cancel", ["cancel", "refund"]),
        _keyword_automation("price", ["price"]),
    ])
    out = asyncio.run(match_triggers(store, "t1", "please CANCEL my order"))
    assert out == ["cancel"]


def test_keyword_case_in_config_is_ignored():
    out = match_keyword_automations([_keyword_automation("a", ["HeLLo"])], "hello there")
    assert out == ["a"]


def test_automation_listed_once_even_if_several_keywords_match():
    out = match_keyword_automations([_keyword_automation("a", ["order", "cancel"])], "cancel order")
    assert out == ["a"]


def test_only_active_keyword_automations_of_the_tenant_match():
    store = FakeStore(automations=[
        _keyword_automation("inactive", ["hi"], is_active=False),
        _keyword_automation("other-tenant", ["hi"], tenant_id="t2"),
        make_automation([], [], automation_id="manual", trigger_type="manual", trigger_config={"keywords": ["hi"]}),
        _keyword_automation("ok", ["hi"]),
    ])
    assert asyncio.run(match_triggers(store, "t1", "hi!")) == ["ok"]


def test_blank_keywords_and_missing_config_never_match():
    automations = [
        _keyword_automation("blank", ["", "   "]),
        make_automation([], [], automation_id="no-config", trigger_type="keyword", trigger_config=None),
    ]
    assert match_keyword_automations(automations, "anything") == []


def test_missing_message_content_matches_nothing():
    assert match_keyword_automations([_keyword_automation("a", ["hi"])], None) == []


def test_results_keep_load_order():
    automations = [_keyword_automation("z", ["sale"]), _keyword_automation("a", ["sale"])]
    assert match_keyword_automations(automations, "big SALE today") == ["z", "a"]
