from __future__ import annotations

from types import SimpleNamespace

from dialogue.states import HistoryEntry, Sentiment, SwitchType, TopicDetection, TopicGuidanceState
from dialogue.topics import TOPIC_CATALOG, TopicAdvisor


def _topic(topic_id):
    return next(t for t in TOPIC_CATALOG if t.id == topic_id)


def _agent(name, interests):
    return SimpleNamespace(id=name.lower(), persona=SimpleNamespace(name=name, interests=interests))


def _entries(*messages):
    return [HistoryEntry(turn_number=i, message=m) for i, m in enumerate(messages, start=1)]


def test_detects_technology_with_positive_sentiment():
    detection = TopicAdvisor().detect_topics("I love programming and building new software apps")
    assert detection.dominant_topic is not None
    assert detection.dominant_topic.name == "Technology"
    assert detection.confidence > 0
    assert detection.sentiment == Sentiment.POSITIVE
    assert detection.word_count == 8


def test_relevance_scores_stay_in_unit_range():
    advisor = TopicAdvisor()
    for text in [
        "code code code code",
        "I had dinner at a restaurant after my flight and hotel check in",
        "hello",
        "what do you think about the meaning of life and family",
    ]:
        for match in advisor.detect_topics(text).matches:
            assert 0.0 <= match.relevance <= 1.0


def test_empty_message_has_no_topics():
    detection = TopicAdvisor().detect_topics("")
    assert detection.matches == []
    assert detection.dominant_topic is None
    assert detection.confidence == 0.0
    assert detection.word_count == 0
    assert detection.sentiment == Sentiment.NEUTRAL


def test_keywords_match_whole_words_only():
    detection = TopicAdvisor().detect_topics("aircraft")
    assert detection.matches == []


def test_equal_relevance_keeps_catalog_order():
    # "music" belongs to both hobbies and entertainment
    detection = TopicAdvisor().detect_topics("music")
    assert [m.topic.id for m in detection.matches] == ["hobbies", "entertainment"]
    assert detection.dominant_topic.id == "hobbies"


def test_negative_sentiment_and_ties():
    advisor = TopicAdvisor()
    assert advisor.detect_topics("that trip was terrible and awful").sentiment == Sentiment.NEGATIVE
    assert advisor.detect_topics("good food but bad service").sentiment == Sentiment.NEUTRAL


def test_switch_classification_follows_new_confidence():
    advisor = TopicAdvisor()
    prev = TopicDetection(dominant_topic=_topic("technology"), confidence=0.9)

    natural = advisor.detect_topic_switch(prev, TopicDetection(dominant_topic=_topic("food"), confidence=0.8))
    suggested = advisor.detect_topic_switch(prev, TopicDetection(dominant_topic=_topic("food"), confidence=0.4))
    forced = advisor.detect_topic_switch(prev, TopicDetection(dominant_topic=_topic("food"), confidence=0.3))

    assert natural.switch_type == SwitchType.NATURAL
    assert suggested.switch_type == SwitchType.SUGGESTED
    assert forced.switch_type == SwitchType.FORCED
    assert forced.from_topic.id == "technology" and forced.to_topic.id == "food"


def test_no_switch_for_same_or_missing_topic():
    advisor = TopicAdvisor()
    tech = TopicDetection(dominant_topic=_topic("technology"), confidence=0.9)
    assert advisor.detect_topic_switch(tech, TopicDetection(dominant_topic=_topic("technology"), confidence=0.2)) is None
    assert advisor.detect_topic_switch(tech, TopicDetection()) is None
    assert advisor.detect_topic_switch(TopicDetection(), tech) is None


def test_lull_on_run_of_short_messages():
    advisor = TopicAdvisor(lull_threshold=3, min_message_length=20)
    history = _entries("ok", "yeah", "sure")
    current = "that sounds ok."
    assert len(current) == 15
    assert advisor.detect_lull(history, current) is True


def test_no_lull_before_threshold_or_with_long_current_message():
    advisor = TopicAdvisor(lull_threshold=3, min_message_length=20)
    assert advisor.detect_lull(_entries("ok", "yeah"), "sure") is False
    assert advisor.detect_lull(
        _entries("ok", "yeah", "sure"),
        "Actually I went hiking last weekend and saw a family of deer by the river",
    ) is False


def test_lull_on_semantic_stagnation():
    advisor = TopicAdvisor(lull_threshold=3, min_message_length=20)
    repeated = "I really think the new library downtown is a wonderful place to read"
    history = _entries(repeated, repeated, repeated)
    assert advisor.detect_lull(history, repeated) is True


def test_lull_detection_is_pure():
    advisor = TopicAdvisor(lull_threshold=3, min_message_length=20)
    history = _entries("ok", "yeah", "sure")
    first = advisor.detect_lull(history, "fine")
    second = advisor.detect_lull(history, "fine")
    assert first == second
    assert advisor.state.history == []


def test_suggestion_prefers_topics_not_recently_discussed():
    advisor = TopicAdvisor()
    agent = _agent("Dana", ["cooking", "movie nights"])
    state = TopicGuidanceState(history=[HistoryEntry(1, "we cooked", _topic("food"), 0.5)])

    suggestion = advisor.suggest_topic(agent, state, TopicDetection())
    assert suggestion.topic.id == "entertainment"
    assert suggestion.confidence == 0.7
    assert "Dana" in suggestion.context


def test_suggestion_falls_back_to_recent_topic():
    advisor = TopicAdvisor()
    agent = _agent("Dana", ["cooking"])
    state = TopicGuidanceState(history=[HistoryEntry(1, "we cooked", _topic("food"), 0.5)])

    suggestion = advisor.suggest_topic(agent, state, TopicDetection())
    assert suggestion.topic.id == "food"
    assert suggestion.confidence == 0.5


def test_no_suggestion_when_only_current_topic_fits():
    advisor = TopicAdvisor()
    agent = _agent("Dana", ["cooking"])
    detection = TopicDetection(dominant_topic=_topic("food"), confidence=0.6)
    assert advisor.suggest_topic(agent, TopicGuidanceState(), detection) is None


def test_guidance_combines_lull_and_suggested_switch():
    advisor = TopicAdvisor()
    agent = _agent("Dana", ["cooking"])
    suggestion = advisor.suggest_topic(agent, TopicGuidanceState(), TopicDetection())
    prev = TopicDetection(dominant_topic=_topic("technology"), confidence=0.9)
    suggested = advisor.detect_topic_switch(prev, TopicDetection(dominant_topic=_topic("travel"), confidence=0.4))
    natural = advisor.detect_topic_switch(prev, TopicDetection(dominant_topic=_topic("travel"), confidence=0.9))

    assert advisor.generate_guidance(False, None, None) is None
    assert advisor.generate_guidance(False, None, natural) is None
    assert "food & dining" in advisor.generate_guidance(True, suggestion, None)
    both = advisor.generate_guidance(True, suggestion, suggested)
    assert "food & dining" in both and "travel" in both


def test_analyze_message_bounds_history_and_current_topics():
    advisor = TopicAdvisor()
    agent = _agent("Dana", ["cooking"])
    texts = [
        "I wrote some code for a new app",
        "we had dinner at a great restaurant",
        "my trip and the flight were long",
        "the meeting with my boss went fine",
        "I watched a movie and a series",
    ]
    for turn in range(1, 26):
        advisor.analyze_message(texts[turn % len(texts)], "dana", turn, agent)

    assert len(advisor.state.history) == 20
    assert advisor.state.history[0].turn_number == 6
    assert len(advisor.state.current_topics) <= 3
    assert advisor.state.switches


def test_analyze_message_flags_lull_and_suggests():
    advisor = TopicAdvisor(lull_threshold=3, min_message_length=20)
    agent = _agent("Dana", ["cooking"])
    for turn, text in enumerate(["ok", "yeah", "sure"], start=1):
        assert advisor.analyze_message(text, "dana", turn, agent).guidance is None

    analysis = advisor.analyze_message("fine", "dana", 4, agent)
    assert advisor.state.lull_detected is True
    assert advisor.state.last_lull_turn == 4
    assert analysis.suggestion is not None
    assert "Subtle hint" in analysis.guidance


def test_statistics_summarize_history():
    advisor = TopicAdvisor()
    agent = _agent("Dana", ["cooking"])
    advisor.analyze_message("I wrote some code for a new app", "dana", 1, agent)
    advisor.analyze_message("more code and software talk", "dana", 2, agent)
    advisor.analyze_message("dinner at the restaurant", "dana", 3, agent)

    stats = advisor.get_statistics()
    assert stats["most_common_topic"] == "Technology"
    assert stats["topic_distribution"] == {"Technology": 2, "Food & Dining": 1}
    assert stats["total_switches"] == 1
    assert 0.0 < stats["average_topic_confidence"] <= 1.0
