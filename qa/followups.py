"""
Keyword heuristics for suggested follow-up questions.

Used when the model supplies fewer than two follow-ups. Topics are detected
from the question and answer text; the first matching topics contribute one
question each and generic questions pad the list.
"""
from __future__ import annotations

import re
from typing import Optional

MIN_FOLLOW_UPS = 2
MAX_FOLLOW_UPS = 3

CJK = re.compile(r"[㐀-䶿一-鿿]")

# Topic keywords (order is priority)
TOPIC_SIGNALS = {
    "career": ["事业", "工作", "职业", "晋升", "升职", "career", "job", "work", "promotion"],
    "wealth": ["财运", "财富", "收入", "投资", "赚钱", "wealth", "money", "income", "finance", "invest"],
    "relationship": ["感情", "婚姻", "姻缘", "恋爱", "桃花", "relationship", "marriage", "love", "partner"],
    "health": ["健康", "身体", "疾病", "health", "illness", "wellbeing"],
    "family": ["家庭", "父母", "子女", "家人", "family", "parents", "children"],
    "study": ["学业", "考试", "学习", "读书", "study", "exam", "school", "education"],
}

TOPIC_QUESTIONS = {
    "zh": {
        "career": "关于我的事业发展，有什么具体的建议吗？",
        "wealth": "我的财运状况如何？如何改善？",
        "relationship": "我的感情运势如何？需要注意什么？",
        "health": "在健康方面，我需要特别注意哪些问题？",
        "family": "我的家庭关系有哪些需要留意的地方？",
        "study": "在学业方面，有什么提升的建议吗？",
    },
    "en": {
        "career": "What specific advice is there for my career development?",
        "wealth": "How is my wealth outlook, and how can I improve it?",
        "relationship": "How do my relationships look, and what should I watch for?",
        "health": "Which health issues should I pay particular attention to?",
        "family": "What should I keep in mind about my family relationships?",
        "study": "How can I do better in my studies?",
    },
}

GENERIC_QUESTIONS = {
    "zh": [
        "能详细解释一下刚才提到的内容吗？",
        "基于这个分析，我有什么需要注意的地方吗？",
        "接下来一段时间我的整体运势如何？",
    ],
    "en": [
        "Could you explain what you just mentioned in more detail?",
        "Based on this analysis, is there anything I should watch out for?",
        "How does my overall outlook look for the coming period?",
    ],
}


def detect_language(text: str) -> str:
    return "zh" if CJK.search(text or "") else "en"


def detect_topics(text: str) -> list[str]:
    """Topics whose keywords appear in text, in priority order."""
    text_lower = (text or "").lower()
    return [
        topic
        for topic, keywords in TOPIC_SIGNALS.items()
        if any(keyword in text_lower for keyword in keywords)
    ]


def hint_question(topic_hints: list[str], language: str) -> Optional[str]:
    hints = [h.strip() for h in topic_hints if h and h.strip()]
    if not hints:
        return None
    if language == "zh":
        return f"我的{''.join(hints)}情况如何？该如何调理？"
    return f"How is my {' and '.join(hints)} situation, and how can I improve it?"


def generate_follow_up_questions(
    question: str,
    answer: str,
    topic_hints: Optional[list[str]] = None
) -> list[str]:
    """
    Suggest 2-3 follow-up questions for a question/answer pair.

    Args:
        question: The user's question.
        answer: The answer given.
        topic_hints: Caller-supplied topics; they take precedence over detection.

    Returns:
        Between MIN_FOLLOW_UPS and MAX_FOLLOW_UPS distinct questions.
    """
    language = detect_language(question)
    suggestions: list[str] = []

    hinted = hint_question(topic_hints or [], language)
    if hinted:
        suggestions.append(hinted)

    for topic in detect_topics(f"{question}\n{answer}"):
        suggestions.append(TOPIC_QUESTIONS[language][topic])

    for generic in GENERIC_QUESTIONS[language]:
        if len(suggestions) >= MIN_FOLLOW_UPS:
            break
        suggestions.append(generic)

    unique = list(dict.fromkeys(suggestions))
    return unique[:MAX_FOLLOW_UPS]


def complete_follow_ups(
    model_follow_ups: list[str],
    question: str,
    answer: str,
    topic_hints: Optional[list[str]] = None
) -> list[str]:
    """
    Keep the model's follow-ups when it gave at least two, otherwise top them
    up from the heuristic. Caller hints always lead when present.
    """
    model_follow_ups = list(dict.fromkeys(q.strip() for q in model_follow_ups if q and q.strip()))
    language = detect_language(question)
    hinted = hint_question(topic_hints or [], language)

    if len(model_follow_ups) >= MIN_FOLLOW_UPS and not hinted:
        return model_follow_ups[:MAX_FOLLOW_UPS]

    combined = ([hinted] if hinted else []) + model_follow_ups
    candidates = generate_follow_up_questions(question, answer) + GENERIC_QUESTIONS[language]
    for suggestion in candidates:
        if len(combined) >= MAX_FOLLOW_UPS:
            break
        if suggestion not in combined:
            combined.append(suggestion)

    return combined[:MAX_FOLLOW_UPS]
