from conftest import FakeClassifier, FakeDirectory, FakeEgress, pane
from turnbridge.egress import IMessageEgress
from turnbridge.models import RouteOutcome
from turnbridge.resolution import ResolutionEngine
from turnbridge.router import NO_SESSIONS_NOTICE, ReplyRouter


class SpyEngine(ResolutionEngine):
    def __init__(self, memory):
        super().__init__(memory)
        self.calls = 0

    def resolve(self, tag, body, sessions):
        self.calls += 1
        return super().resolve(tag, body, sessions)


def _router(memory, sessions, classifier=None, dead=()):
    directory = FakeDirectory(sessions=list(sessions), dead=set(dead))
    egress = FakeEgress()
    engine = ResolutionEngine(memory, classifier=classifier)
    return ReplyRouter(directory, engine, memory, egress), directory, egress


def test_tagged_reply_is_relayed_and_confirmed(memory):
    router, directory, egress = _router(memory, [pane("%1", "work:0.0"), pane("%2", "home:0.1")])

    outcome = router.route_reply("[home] build is green")

    assert outcome == RouteOutcome.DELIVERED
    assert directory.relayed == [("%2", "📱 build is green")]
    assert egress.messages == ["✓ Delivered to [home:0.1]"]
    assert memory.last_routed().target_id == "%2"


def test_single_default_agent_gets_untagged_reply(memory):
    classifier = FakeClassifier(answer=("my-agent:0.0", "x"))
    router, directory, egress = _router(memory, [pane("%5", "my-agent:0.0")], classifier=classifier)

    outcome = router.route_reply("looks good, ship it")

    assert outcome == RouteOutcome.DELIVERED
    assert classifier.calls == []
    assert directory.relayed == [("%5", "📱 looks good, ship it")]
    assert egress.messages == ["✓ Delivered to [my-agent:0.0]"]


def test_no_sessions_short_circuits_resolution(memory):
    directory = FakeDirectory()
    egress = FakeEgress()
    engine = SpyEngine(memory)
    router = ReplyRouter(directory, engine, memory, egress)

    outcome = router.route_reply("[home] hi")

    assert outcome == RouteOutcome.NO_SESSIONS
    assert engine.calls == 0
    assert egress.messages == [NO_SESSIONS_NOTICE]
    assert directory.relayed == []


def test_unknown_tag_lists_available_sessions(memory):
    router, directory, egress = _router(memory, [pane("%1", "a:0.0"), pane("%2", "b:0.0")])

    outcome = router.route_reply("[zzz] hello")

    assert outcome == RouteOutcome.NO_MATCH
    assert egress.messages == ["No session matching 'zzz'. Available: a:0.0, b:0.0"]
    assert directory.relayed == []
    assert memory.last_routed() is None


def test_untagged_without_match_uses_distinct_notice(memory):
    router, _, egress = _router(memory, [pane("%1", "a:0.0"), pane("%2", "b:0.0")])

    outcome = router.route_reply("hello")

    assert outcome == RouteOutcome.NO_MATCH
    assert egress.messages == ["No active session found. Available: a:0.0, b:0.0"]


def test_target_dying_before_relay_reports_others(memory):
    router, directory, egress = _router(
        memory, [pane("%1", "a:0.0"), pane("%2", "b:0.0"), pane("%3", "c:0.0")], dead={"%2"}
    )

    outcome = router.route_reply("[b:0.0] hi")

    assert outcome == RouteOutcome.TARGET_GONE
    assert egress.messages == ["Session b:0.0 is no longer active. Available: a:0.0, c:0.0"]
    assert directory.relayed == []
    assert memory.last_routed() is None


def test_semantic_body_is_relayed(memory):
    classifier = FakeClassifier(answer=("web:0.0", "check the logs"))
    router, directory, _ = _router(memory, [pane("%1", "api:0.0"), pane("%2", "web:0.0")], classifier=classifier)

    router.route_reply("ask web to check the logs")

    assert directory.relayed == [("%2", "📱 check the logs")]


def test_sticky_routing_follows_previous_reply(memory):
    router, directory, _ = _router(memory, [pane("%1", "my-agent:0.0"), pane("%2", "work:0.0")])

    router.route_reply("[work] first")
    router.route_reply("second")

    assert directory.relayed == [("%2", "📱 first"), ("%2", "📱 second")]


def test_notice_send_failure_does_not_raise(memory):
    directory = FakeDirectory()
    router = ReplyRouter(directory, ResolutionEngine(memory), memory, FakeEgress(fail=True))

    assert router.route_reply("hi") == RouteOutcome.NO_SESSIONS


def test_every_delivery_is_confirmed(memory, monkeypatch):
    sent = []
    monkeypatch.setattr(IMessageEgress, "_osascript_send", staticmethod(lambda recipient, text: sent.append(text)))
    directory = FakeDirectory(sessions=[pane("%2", "home:0.1")])
    router = ReplyRouter(directory, ResolutionEngine(memory), memory, IMessageEgress("+15551234567"))

    router.route_reply("[home] first")
    router.route_reply("[home] second")

    assert directory.relayed == [("%2", "📱 first"), ("%2", "📱 second")]
    assert sent == ["🤖 ✓ Delivered to [home:0.1]", "🤖 ✓ Delivered to [home:0.1]"]
