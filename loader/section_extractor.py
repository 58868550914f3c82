import re

# Report section vocabulary, checked in order. Chinese headings come from the
# deep report template; the English ones from the translated template.
SECTION_KEYWORDS = [
    "性格特征",
    "事业运",
    "财运",
    "感情运",
    "健康运",
    "人际关系",
    "命理分析",
    "大运",
    "流年",
    "十神",
    "五行",
    "原局",
    "建议",
    "总结",
    "Personality",
    "Career",
    "Wealth",
    "Relationship",
    "Health",
    "Luck Cycle",
    "Annual Flow",
    "Five Elements",
    "Advice",
    "Summary",
]

DEFAULT_SECTION = "general"

MARKDOWN_HEADER = re.compile(r"^\s*#{1,6}\s+(.+?)\s*$", re.MULTILINE)


def extract_section(text: str) -> str:
    if not text:
        return DEFAULT_SECTION

    header = MARKDOWN_HEADER.search(text)
    if header:
        return header.group(1).strip()

    lowered = text.lower()
    for keyword in SECTION_KEYWORDS:
        if keyword.lower() in lowered:
            return keyword

    return DEFAULT_SECTION
