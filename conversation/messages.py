"""
Canned customer-facing messages (Brazilian Portuguese).

Used for the deterministic turns of the conversation: confirmation
questions, numbered product lists and re-asks.
"""

from typing import List

from .state import (
    EventType,
    PendingContextSwitch,
    PendingMultiProductSelection,
    PendingProductConfirmation,
)

CONFIRMATION_REASONS = {
    EventType.APPROVED: "Vi aqui que você comprou o {name}.",
    EventType.ABANDONED: "Vi aqui que você se interessou pelo {name}.",
    EventType.REFUND: "Vi aqui que você teve o {name}.",
}

COULD_NOT_PROCESS = (
    "Desculpe, não consegui processar sua mensagem agora. "
    "Já avisei nossa equipe e alguém vai falar com você em breve."
)

COULD_NOT_PROCESS_NO_HANDOFF = (
    "Desculpe, não consegui processar sua mensagem agora. "
    "Pode tentar novamente em instantes?"
)

DONT_KNOW = (
    "Essa é uma ótima pergunta, mas não tenho essa informação agora. "
    "Vou encaminhar para a nossa equipe e logo alguém te responde."
)

ESCALATED = (
    "Vou transferir você para um atendente da nossa equipe, "
    "que vai continuar o seu atendimento em breve."
)

IN_HANDOFF = "Um atendente da nossa equipe já está cuidando do seu atendimento. Aguarde só um pouquinho."

ASK_WHICH_PRODUCT = "Entendi! Sobre qual produto você gostaria de falar?"

MEDIA_NOT_SUPPORTED = (
    "Recebi seu arquivo, mas por aqui eu só consigo ler mensagens de texto. "
    "Pode me escrever sua dúvida?"
)


def confirmation_question(pending: PendingProductConfirmation) -> str:
    intro = CONFIRMATION_REASONS.get(pending.event_type, "Vi aqui o {name} no seu histórico.")
    intro = intro.format(name=pending.suggested_product_name)
    return f"{intro} Sua dúvida é sobre ele? (sim/não)"


def confirmation_reask(pending: PendingProductConfirmation) -> str:
    return (
        f"Só para eu te ajudar certinho: sua dúvida é sobre o "
        f"{pending.suggested_product_name}? Responda sim ou não."
    )


def product_list(pending: PendingMultiProductSelection) -> str:
    lines = [f"{p.index}. {p.product_name}" for p in pending.products]
    listing = "\n".join(lines)
    return (
        f"Vejo que você tem {len(pending.products)} produtos:\n\n{listing}\n\n"
        f"Sobre qual deles você está falando? Pode responder com o número."
    )


def product_list_reask(pending: PendingMultiProductSelection) -> str:
    lines = [f"{p.index}. {p.product_name}" for p in pending.products]
    return "Não consegui identificar o produto. Qual destes?\n\n" + "\n".join(lines)


def context_switch_question(pending: PendingContextSwitch) -> str:
    return (
        f"Estávamos falando sobre o {pending.from_product_name}. "
        f"Você quer mudar para o {pending.to_product_name}? (sim/não)"
    )


def context_switch_reask(pending: PendingContextSwitch) -> str:
    return (
        f"Quer continuar no {pending.from_product_name} ou mudar para o "
        f"{pending.to_product_name}?"
    )


def candidate_names(names: List[str], limit: int = 3) -> str:
    shown = [n for n in names if n][:limit]
    if not shown:
        return ""
    if len(shown) == 1:
        return shown[0]
    return ", ".join(shown[:-1]) + f" ou {shown[-1]}"
