"""Prompt assembly for deal questions and deployment plans."""

from __future__ import annotations

from src.deal_context.core.timeutil import format_date, slack_ts_to_ms
from src.deal_context.orchestrator.schemas import DealBundle

NOT_FOUND = "Not found in CRM records"

_RULES = """Rules:
- Use the structured deal data (amount, deal type, line items, stage) as ground truth. Do not infer products or deal structure from email or meeting content.
- CRM data is the primary source for how the deal progressed, who was involved, risks and holdups. Slack history is supplementary context.
- Answer directly and concisely: 1-3 sentences for simple questions, more only when the question needs detail.
- If data is missing from both sources, say "Not found in CRM records or channel history."
- Reference sources when helpful (e.g. "Based on an email from Jan 15...").
- Do not invent facts. Only use the information provided above.
- If the question is unrelated to the deal, reply with one light sentence that steers back to the deal."""


_PLAN_SECTIONS = """Sections (leave out any section you have no data for):

*Deployment Plan: {deal_name}*
{deal_url}

*What Was Sold*
Products, amount and deal type. Line items are the record of what was sold.

*Install Details*
Install date, site name and address, scanner model, compute type (Cloud, GovCloud, On Prem or Air Gapped On Prem), installer or field service engineer.

*Scoping & Preparation*
CSM scoping call status, site readiness (IT, power, network, access), project tracker links shared in the channel.

*Training*
Dates, who runs it, on-site or remote.

*Key Contacts*
Customer contacts from the CRM, and the internal team (sales owner, CSM, installer, trainer) as named in emails.

*Notable Context & Risks*
Special requirements, access or IT coordination, shipping, anything else the team should know before install."""

_PLAN_RULES = """Rules:
- Write in Slack mrkdwn. Never write a placeholder such as "TBD" or "Unknown"; drop the line or section instead.
- Give concrete dates, names and places rather than summaries.
- The structured deal data (amount, deal type, line items) is ground truth. Do not infer products or deal type from emails; the scanner model comes from line items first.
- Emails and Slack are both primary sources for logistics. Internal roles usually appear in email signatures and sender fields.
- Facility and billing forms posted in the channel give the install address; use the billing shipping address only when it is outside the US.
- Do not invent facts. Only use the information provided below."""

PLAN_MESSAGE_CHARS = 500


def _channel_history_text(bundle: DealBundle, max_chars: int | None = None) -> str:
    if not bundle.channel_history:
        return "No channel history available."
    lines = []
    for message in bundle.channel_history:
        speaker = f"<@{message.user}>" if message.user else "Unknown"
        text = message.text[:max_chars] if max_chars else message.text
        lines.append(f"[{format_date(slack_ts_to_ms(message.ts))}] {speaker}: {text}")
    return "\n".join(lines)


def _thread_text(bundle: DealBundle) -> str:
    context = bundle.thread_context
    if context is None or not context.messages:
        return ""
    lines = [f"<@{message.speaker}>: {message.text}" for message in context.messages]
    return "\n\nThread conversation history:\n" + "\n".join(lines)


def build_qa_prompt(bundle: DealBundle) -> str:
    """Render the synthesis prompt for one question."""
    deal = bundle.deal
    closed = deal.closed_at or NOT_FOUND
    if bundle.cycle_days is not None:
        closed += f" ({bundle.cycle_days}-day cycle)"

    deal_lines = [
        f"- Deal name: {deal.name}",
        f"- Deal link: {bundle.deal_url}",
        f"- Sales owner: {bundle.owner_line}",
        f"- Amount: {deal.amount or NOT_FOUND}",
        f"- Deal type: {deal.deal_type or NOT_FOUND}",
        f"- Deal stage: {deal.stage or NOT_FOUND}",
        f"- Pipeline: {deal.pipeline or NOT_FOUND}",
        f"- Created: {deal.created_at or NOT_FOUND}",
        f"- Closed: {closed}",
        f"- Contacts: {bundle.contacts_line}",
        f"- Companies: {bundle.company_line}",
    ]
    if deal.description:
        deal_lines.append(f"- Description: {deal.description}")
    if deal.line_items:
        deal_lines.append("- Products/Line items:\n" + "\n".join(i.render() for i in deal.line_items))

    return (
        "You are a deal context assistant for post-sales teams (Deployments, Customer "
        "Success and Training) who take over after Sales closes a deal.\n\n"
        f"User's question: {bundle.question}\n\n"
        "CRM deal information:\n"
        + "\n".join(deal_lines)
        + "\n\nDeal activity timeline (most recent first):\n"
        + bundle.timeline
        + "\n\nSlack channel history (recent messages):\n"
        + _channel_history_text(bundle)
        + _thread_text(bundle)
        + "\n\n"
        + _RULES
        + "\n\nAnswer the question:"
    )


def build_plan_prompt(bundle: DealBundle) -> str:
    """Render the deployment plan prompt for post-sales hand-off."""
    deal = bundle.deal
    closed = deal.closed_at or NOT_FOUND
    if bundle.cycle_days is not None:
        closed += f" ({bundle.cycle_days}-day cycle)"

    deal_lines = [
        f"- Deal: {deal.name}",
        f"- Sales owner: {bundle.owner_line}",
        f"- CSM: {bundle.csm_line or NOT_FOUND}",
        f"- Amount: {deal.display_amount() or NOT_FOUND}",
        f"- Deal type: {deal.deal_type or NOT_FOUND}",
        f"- Deal stage: {deal.stage or NOT_FOUND}",
        f"- Pipeline: {deal.pipeline or NOT_FOUND}",
        f"- Created: {deal.created_at or NOT_FOUND}",
        f"- Closed: {closed}",
        f"- Company: {bundle.company_line}",
        f"- Contacts: {bundle.contacts_line}",
    ]
    if deal.description:
        deal_lines.append(f"- Description: {deal.description}")
    if deal.line_items:
        deal_lines.append("- Products/Line items:\n" + "\n".join(i.render() for i in deal.line_items))

    return (
        "You are writing a deployment plan for the post-sales teams (Deployments, Customer "
        "Success and Training) who take this deal over from Sales. Pull concrete deployment "
        "details out of the CRM data and Slack history below.\n\n"
        f'Deal: "{deal.name}"\n'
        f"Deal link: {bundle.deal_url}\n\n"
        + _PLAN_SECTIONS.format(deal_name=deal.name, deal_url=bundle.deal_url)
        + "\n\n"
        + _PLAN_RULES
        + "\n\nCRM deal information:\n"
        + "\n".join(deal_lines)
        + "\n\nDeal activity timeline (most recent first):\n"
        + bundle.timeline
        + "\n\nSlack channel history (most recent first):\n"
        + _channel_history_text(bundle, max_chars=PLAN_MESSAGE_CHARS)
    )
