import json
import logging
import re
from collections import Counter
from typing import Any, Dict, List, Optional

from azure.ai.inference import ChatCompletionsClient
from azure.ai.inference.models import SystemMessage, UserMessage
from azure.core.credentials import AzureKeyCredential

import config
from corrections import parse_corrections
from entities import BusinessRule, Correction, DataSet, ValidationIssue
from errors import AIResponseError, AIUnavailableError, RuleFormatError
from rules import normalize_rule, normalize_rules

logger = logging.getLogger(__name__)


# --------- GPTAgent Wrapper ---------
class GPTAgent:
    def __init__(self, token: Optional[str] = None, endpoint: Optional[str] = None, model: Optional[str] = None):
        token = token or config.GITHUB_TOKEN
        if not token:
            raise AIUnavailableError("Missing GITHUB_TOKEN env variable")

        self.client = ChatCompletionsClient(
            endpoint=endpoint or config.GITHUB_AI_ENDPOINT,
            credential=AzureKeyCredential(token),
        )
        self.model_name = model or config.GITHUB_AI_MODEL

    def chat_completion(self, system_prompt: str, user_prompt: str) -> str:
        messages = [
            SystemMessage(content=system_prompt),
            UserMessage(content=user_prompt),
        ]

        response = self.client.complete(
            messages=messages,
            model=self.model_name,
            temperature=config.AI_TEMPERATURE,
            top_p=1.0,
            max_tokens=config.AI_MAX_TOKENS,
        )

        return response.choices[0].message.content or ""


# --------- Response parsing ---------

_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
_JSON_SPAN = re.compile(r"(\[.*\]|\{.*\})", re.DOTALL)


def extract_json(text: str) -> Any:
    """Pull the JSON payload out of a model reply, ignoring code fences and chatter."""
    stripped = _FENCE.sub("", (text or "").strip())
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    match = _JSON_SPAN.search(stripped)
    if not match:
        raise AIResponseError("AI response did not contain valid JSON.")
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise AIResponseError(f"AI response did not contain valid JSON: {e}") from e


def build_data_context(data: DataSet) -> Dict[str, Any]:
    """Summarise the dataset for prompts without sending every row."""
    skills: Counter = Counter()
    for worker in data.workers:
        worker_skills = worker.get("Skills")
        if isinstance(worker_skills, (list, tuple, set)):
            skills.update(worker_skills)

    priorities: Counter = Counter(str(c.get("PriorityLevel")) for c in data.clients)

    return {
        "counts": {
            "client": len(data.clients),
            "worker": len(data.workers),
            "task": len(data.tasks),
            "rule": len(data.rules),
        },
        "skillDistribution": dict(sorted(skills.items())),
        "priorityDistribution": dict(sorted(priorities.items())),
        "activeRules": [rule.description for rule in data.rules],
    }


def _sample(rows, limit=5):
    return json.dumps(rows[:limit], indent=2, default=str)


# --------- Collaborators ---------

RULE_SCHEMAS = """
1. CoRunRule: { "type": "coRun", "taskIds": ["T1", "T2"], "description": "..." }
2. SlotRestrictionRule: { "type": "slotRestriction", "targetGroup": "ClientGroup" | "WorkerGroup", "groupTag": "GroupA", "minCommonSlots": 2, "description": "..." }
3. LoadLimitRule: { "type": "loadLimit", "workerGroup": "GroupA", "maxSlotsPerPhase": 2, "description": "..." }
4. PhaseWindowRule: { "type": "phaseWindow", "taskId": "T15", "allowedPhases": [1, 2, 3], "description": "..." }
5. PatternMatchRule: { "type": "patternMatch", "pattern": "^T1", "ruleTemplate": "...", "parameters": {}, "description": "..." }
"""


def generate_rule(agent: GPTAgent, request: str, data: DataSet) -> BusinessRule:
    """
    Convert a natural-language rule description into a rule object.

    Raises RuleFormatError when the model declines or answers with something
    that maps onto no rule type.
    """
    prompt = f"""
You are an expert AI rules converter that turns natural language allocation rules into JSON.

Clients (sample):
{_sample(data.clients)}

Workers (sample):
{_sample(data.workers)}

Tasks (sample):
{_sample(data.tasks)}

The JSON object must conform to one of these rule schemas:
{RULE_SCHEMAS}

User's rule: "{request.strip()}"

Return ONLY the JSON object for the rule. If the rule is ambiguous or cannot be mapped to a known type,
return {{ "error": "Rule is ambiguous or not supported." }}
"""
    reply = agent.chat_completion(
        system_prompt="You convert allocation rules into structured JSON rule objects. Return only JSON.",
        user_prompt=prompt,
    )
    logger.debug("AI rule response: %r", reply)
    payload = extract_json(reply)
    if isinstance(payload, list):
        if not payload:
            raise RuleFormatError("AI returned no rule")
        payload = payload[0]
    return normalize_rule(payload, id_prefix="ai")


def recommend_rules(agent: GPTAgent, data: DataSet) -> List[BusinessRule]:
    context = build_data_context(data)
    prompt = f"""
You are an expert rule recommender. Analyze the data summary and suggest 2-3 new business rules.

Data Summary:
{json.dumps(context, indent=2)}

Each suggestion must be a JSON object matching one of these schemas:
{RULE_SCHEMAS}

Return your response as a JSON array of rule objects. Respond ONLY with the raw JSON array.
"""
    reply = agent.chat_completion(
        system_prompt="You are a business rules AI. Return only valid JSON arrays of rule objects.",
        user_prompt=prompt,
    )
    payload = extract_json(reply)
    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        raise AIResponseError("AI rule recommendations were not a JSON array")
    rules = normalize_rules(payload, id_prefix="ai")
    logger.info("AI recommended %d usable rule(s) out of %d", len(rules), len(payload))
    return rules


def analyze_data(agent: GPTAgent, data: DataSet) -> List[str]:
    context = build_data_context(data)
    prompt = f"""
You are an expert data analyst. Analyze the following summary for potential bottlenecks or strategic mismatches.

Data Summary:
{json.dumps(context, indent=2)}

Provide 3-5 findings as actionable insights.
Return your response as a JSON array of strings. Example: ["Finding 1", "Finding 2"]
Respond ONLY with the raw JSON array.
"""
    reply = agent.chat_completion(
        system_prompt="You are a resource planning analyst. Return only JSON arrays of strings.",
        user_prompt=prompt,
    )
    payload = extract_json(reply)
    if not isinstance(payload, list):
        raise AIResponseError("AI analysis was not a JSON array")
    return [str(finding) for finding in payload]


def suggest_corrections(
    agent: GPTAgent,
    data: DataSet,
    issues: List[ValidationIssue],
    limit: Optional[int] = None,
) -> List[Correction]:
    """
    Ask the model for one fix per issue. Only the first ``limit`` issues are
    sent; with no issues the model is not called at all.
    """
    limit = config.CORRECTION_ISSUE_LIMIT if limit is None else limit
    to_fix = issues[:limit]
    if not to_fix:
        return []

    prompt = f"""
You are an expert data correction assistant. Given a list of validation errors, suggest a fix for each.

Errors:
{json.dumps([i.to_dict() for i in to_fix], indent=2, default=str)}

Entity counts: {json.dumps(build_data_context(data)["counts"])}

For each error, find the entity type ('clients', 'workers' or 'tasks') from the rowId prefix (C, W or T).
Decide whether the fix should REPLACE the value or APPEND to an existing list:
- Use 'APPEND' for list fields like 'RequiredSkills' or 'Skills' when a value is missing.
- Use 'REPLACE' for single-value fields like 'PriorityLevel' or for malformed data.

Return a JSON array of objects with this schema:
{{ "rowId": string, "entityType": string, "field": string, "newValue": any, "reason": string, "correctionType": "REPLACE" | "APPEND" }}
Respond ONLY with the raw JSON array.
"""
    reply = agent.chat_completion(
        system_prompt="You propose data corrections. Return only JSON arrays of correction objects.",
        user_prompt=prompt,
    )
    payload = extract_json(reply)
    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        raise AIResponseError("AI corrections were not a JSON array")
    return parse_corrections(payload)
