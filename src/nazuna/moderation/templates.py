"""Message texts and placeholder substitution for group announcements."""

from __future__ import annotations

from typing import Dict

from nazuna.datatypes.protocol_datatypes import GroupMetadata, MembershipAction, mention_tag

PLACEHOLDER_PARTICIPANT = "#numerodele#"
PLACEHOLDER_GROUP_NAME = "#nomedogp#"
PLACEHOLDER_DESCRIPTION = "#desc#"
PLACEHOLDER_MEMBERS = "#membros#"

UNKNOWN_AUTHOR = "alguém"

ROLE_CHANGE_TEXT: Dict[MembershipAction, str] = {
    MembershipAction.PROMOTE: "promovido a administrador",
    MembershipAction.DEMOTE: "rebaixado de administrador",
}


def render_placeholders(template: str, participant: str, metadata: GroupMetadata) -> str:
    """Replace every occurrence of each placeholder token in ``template``."""
    replacements = (
        (PLACEHOLDER_PARTICIPANT, mention_tag(participant)),
        (PLACEHOLDER_GROUP_NAME, metadata.subject),
        (PLACEHOLDER_DESCRIPTION, metadata.description or ""),
        (PLACEHOLDER_MEMBERS, str(metadata.member_count)),
    )
    text = template
    for token, value in replacements:
        text = text.replace(token, value)
    return text


def has_custom_text(template: str | None) -> bool:
    """A one-character template is treated as unset."""
    return bool(template) and len(template) > 1


def default_welcome_text(participant: str, metadata: GroupMetadata) -> str:
    return (
        f"🎉 Bem-vindo(a), {mention_tag(participant)}! Você entrou no grupo *{metadata.subject}*. "
        f"Leia as regras e aproveite! Membros: {metadata.member_count}. "
        f"Descrição: {metadata.description or 'Nenhuma'}."
    )


def default_exit_text(participant: str, metadata: GroupMetadata) -> str:
    return (
        f"👋 {mention_tag(participant)} saiu do grupo *{metadata.subject}*. "
        f"Até mais! Membros restantes: {metadata.member_count}."
    )


def role_change_text(participant: str, action: MembershipAction, author: str) -> str:
    return f"🚨 Atenção! {mention_tag(participant)} foi {ROLE_CHANGE_TEXT[action]} por {mention_tag(author)}."


def antifake_text(participant: str) -> str:
    return f"🚫 {mention_tag(participant)} foi removido por suspeita de número falso (código de país não permitido)."


def antipt_text(participant: str) -> str:
    return f"🇵🇹 {mention_tag(participant)} foi removido por ser um número de Portugal (anti-PT ativado)."


def blacklist_text(participant: str, reason: str) -> str:
    return f"🚫 {mention_tag(participant)} foi removido do grupo por estar na lista negra. Motivo: {reason}"
