from nazuna.datatypes.protocol_datatypes import GroupMetadata, MembershipAction
from nazuna.moderation import templates

METADATA = GroupMetadata(
    id="123@g.us",
    subject="Grupo Teste",
    participants=[f"{n}@s.whatsapp.net" for n in range(10)],
    description="Sem spam",
)


def test_all_occurrences_are_replaced():
    template = "#membros# membros! Sim, #membros#. #numerodele# #numerodele# em #nomedogp#"
    text = templates.render_placeholders(template, "5511999999999@s.whatsapp.net", METADATA)

    assert text == "10 membros! Sim, 10. @5511999999999 @5511999999999 em Grupo Teste"


def test_missing_description_renders_empty():
    metadata = GroupMetadata(id="g", subject="G", participants=[])
    assert templates.render_placeholders("[#desc#]", "u@s.whatsapp.net", metadata) == "[]"


def test_unknown_tokens_are_left_alone():
    assert templates.render_placeholders("#outro# #desc#", "u@s", METADATA) == "#outro# Sem spam"


def test_has_custom_text():
    assert templates.has_custom_text("Oi") is True
    assert templates.has_custom_text("x") is False
    assert templates.has_custom_text("") is False
    assert templates.has_custom_text(None) is False


def test_role_change_text():
    promote = templates.role_change_text("55111@s.whatsapp.net", MembershipAction.PROMOTE, "55222@s.whatsapp.net")
    demote = templates.role_change_text("55111@s.whatsapp.net", MembershipAction.DEMOTE, templates.UNKNOWN_AUTHOR)

    assert promote == "🚨 Atenção! @55111 foi promovido a administrador por @55222."
    assert demote == "🚨 Atenção! @55111 foi rebaixado de administrador por @alguém."


def test_default_texts_mention_participant():
    welcome = templates.default_welcome_text("5511@s.whatsapp.net", METADATA)
    goodbye = templates.default_exit_text("5511@s.whatsapp.net", METADATA)

    assert "@5511" in welcome and "Grupo Teste" in welcome and "Membros: 10" in welcome
    assert "@5511" in goodbye and "Membros restantes: 10" in goodbye
    assert "Portugal" in templates.antipt_text("351911@s.whatsapp.net")
    assert "spam" in templates.blacklist_text("5511@s.whatsapp.net", "spam")
