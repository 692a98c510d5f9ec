"""Prompt templates used by the relevance classifier and the orchestrator."""

RELEVANCE_MARKER = "RELEVANT:"

ANALYZE_TOOL_RELEVANCE = """
You decide whether a tool is needed to answer the user's question.

Tool description:
{tool_description}

Previous assistant answer (may be empty):
{previous_response}

User question:
{query}

Answer in exactly this format:
RELEVANT: YES or NO
REASON: one short sentence
""".strip()

PROCESS_DATA = """
Odpowiedz na pytanie użytkownika, korzystając z danych zebranych przez narzędzia
(przekazanych jako dane kontekstowe). Jeśli dane nie zawierają odpowiedzi, powiedz o tym wprost.
Nie wymyślaj przepisów ani numerów artykułów.

Pytanie: {question}
""".strip()

# Cold-start answer when nothing is relevant and there is no conversation yet
FIRST_IRRELEVANT_USER_QUESTION = (
    "Jestem asystentem prawnym i najlepiej odpowiadam na pytania dotyczące polskiego prawa. "
    "Włącz wyszukiwanie aktów prawnych lub zadaj pytanie o konkretny przepis, karę lub obowiązek, "
    "a postaram się pomóc."
)

STATUS_ANALYZING = "Analizuję zapytanie..."
STATUS_DIRECT = "Generuję odpowiedź na podstawie kontekstu..."
STATUS_FINAL = "Generuję ostateczną odpowiedź..."


def status_selected_tools(names: list[str]) -> str:
    return f"Postanowiłem użyć {len(names)} narzędzi: {', '.join(names)}"


def status_awaiting_tool(name: str) -> str:
    return f"Czekam na odpowiedź od {name}..."


def tool_execution_done(name: str) -> str:
    return f"Wykonanie narzędzia {name} zakończone"
