"""
Text catalog service.

Holds every piece of bot copy (prompts, option labels, notices, system
instructions for the assistant) and renders flow nodes as WhatsApp text.
Texts may be overridden from a YAML file; missing keys fall back to the
built-in Portuguese catalog.
"""

from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from zapdesk.services.conversation_flow import DETAIL_STATES, FlowNode
from zapdesk.utils.logger import logger


_INSTRUCTION_SUFFIX = (
    "Responda sempre em português do Brasil. Ao final de cada resposta completa e útil, "
    "adicione uma frase perguntando se o usuário precisa de mais alguma coisa e lembre-o "
    "de que ele pode usar a opção '🚪 Encerrar conversa' para finalizar o atendimento. "
    "Exemplo: 'Isso ajuda a esclarecer sua dúvida? Se não precisar de mais nada, é só "
    "escolher a opção para encerrar.' Se você não souber a resposta para uma pergunta, "
    "peça desculpas, diga que não entendeu e sugira que o usuário fale com um atendente "
    "humano para obter ajuda especializada."
)

DEFAULT_TEXTS: Dict[str, str] = {
    "greeting": "Olá! Eu sou o assistente virtual da JZF Contabilidade. Como posso te ajudar hoje?",
    "optionAiAssistant": "🤖 Falar com Assistente Virtual",
    "optionScheduling": "📅 Agendar um horário",
    "optionAttendant": "🙋‍♂️ Falar com um atendente",
    "optionEndSession": "🚪 Encerrar conversa",
    "optionHumanTransfer": "🗣️ Falar com um atendente",
    "aiDeptSelect": "Para qual departamento você gostaria de direcionar sua pergunta?",
    "deptRH": "RH (Recursos Humanos)",
    "deptAccounting": "Contábil",
    "deptTax": "Fiscal",
    "deptCorporate": "Societário",
    "deptFinancial": "Financeiro",
    "backToStart": "↩️ Voltar ao início",
    "aiDeptPrompt": (
        "Ok, você selecionou o departamento *{department}*. Pode me fazer sua pergunta agora. "
        "Se precisar, pode também me enviar um arquivo (como PDF, imagem ou planilha).\n\n"
        "Se preferir, escolha uma das opções abaixo:"
    ),
    "schedulingClientType": "Para começar o agendamento, por favor, me informe: você já é nosso cliente?",
    "clientTypeYes": "Sim, já sou cliente",
    "clientTypeNo": "Não, sou um novo cliente",
    "schedulingNewClientDetails": (
        "Entendido. Por favor, descreva o motivo do seu contato, seu nome completo e um "
        "telefone para que possamos preparar nosso encontro."
    ),
    "schedulingExistingClientDetails": (
        "Ok. Por favor, informe o nome da sua empresa (ou seu nome completo) e o motivo do "
        "contato para agilizarmos o seu atendimento."
    ),
    "schedulingSummary": (
        "Obrigado! Revise as informações, por favor:\n\n- *Tipo:* {clientType}\n"
        "- *Detalhes:* {details}\n\nEstá tudo correto?"
    ),
    "confirmYes": "👍 Sim, está correto",
    "confirmNo": "👎 Não, quero corrigir",
    "schedulingConfirmed": (
        "Perfeito! Sua solicitação de agendamento foi enviada. Em breve, um de nossos "
        "especialistas entrará em contato para confirmar a data e a hora."
    ),
    "attendantSelect": "Entendido. Para qual departamento você precisa de atendimento humano?",
    "attendantTransferWait": "Aguarde, em alguns instantes um de nossos atendentes irá te atender.",
    "sessionEnded": "Obrigado por utilizar nossos serviços. A JZF Contabilidade está sempre à disposição!",
    "error": "Desculpe, ocorreu um erro inesperado. Por favor, tente novamente mais tarde.",
    "optionInstruction": "Por favor, digite o número da opção desejada.",
    "invalidOption": "Opção inválida. Digite apenas o número.",
    "aiUnavailable": "IA indisponível no momento.",
    "schedulingQueueReason": "Agendamento: {clientType} - {details}",
    "transferQueueReason": "Contato para setor {department}.",
    "attendantTakeover": "Olá, eu sou o atendente {attendantName} e vou dar continuidade em seu atendimento.",
    "transferNote": "Transferido para outro atendente.",
    "transcriptionNote": 'Transcrição: "{text}"',
    "transcriptionPrompt": "Transcreva este áudio em português do Brasil de forma literal.",
    "transcriptionFailed": "[Erro na transcrição]",
    "transcriptionUnavailable": "[Áudio não transcrito - IA indisponível]",
    "transcriptionEmpty": "[Transcrição vazia]",
    "defaultSystemInstruction": "Você é um assistente prestativo.",
    "quotedSelfName": "Você",
    "quotedMedia": "[Mídia/Arquivo]",
}

DEFAULT_DEPARTMENT_INSTRUCTIONS: Dict[str, str] = {
    "RH": (
        "Você é um especialista em RH da JZF Contabilidade. Responda a perguntas sobre folhas "
        "de pagamento, benefícios, legislação trabalhista e processos de RH de forma clara e "
        "objetiva. " + _INSTRUCTION_SUFFIX
    ),
    "Contábil": (
        "Você é um especialista contábil da JZF Contabilidade. Responda a perguntas sobre "
        "balanços, DRE, impostos sobre lucro, e outras questões contábeis com precisão. "
        + _INSTRUCTION_SUFFIX
    ),
    "Fiscal": (
        "Você é um especialista fiscal da JZF Contabilidade. Responda a perguntas sobre ICMS, "
        "IPI, PIS, COFINS, Simples Nacional e outras obrigações fiscais. " + _INSTRUCTION_SUFFIX
    ),
    "Societário": (
        "Você é um especialista em questões societárias da JZF Contabilidade. Responda a "
        "perguntas sobre abertura, alteração e encerramento de empresas, contratos sociais e "
        "tipos de sociedade. " + _INSTRUCTION_SUFFIX
    ),
    "Financeiro": (
        "Você é um especialista do departamento financeiro da JZF Contabilidade. Responda a "
        "perguntas sobre faturamento, boletos, pagamentos e renegociação de dívidas de forma "
        "clara e educada. " + _INSTRUCTION_SUFFIX
    ),
}


class _TemplateValues(dict):
    """format_map source that renders unknown placeholders as empty text."""

    def __missing__(self, key: str) -> str:
        return ""


class TextCatalog:
    """
    Service for the bot's user-facing copy.

    Loads overrides from bot_texts.yml (keys "texts" and
    "department_instructions") on top of the built-in catalog.
    """

    def __init__(self, catalog_file: str = "config/bot_texts.yml"):
        """
        Initialize the catalog.

        Args:
            catalog_file: Path to the YAML override file
        """
        self.catalog_file = catalog_file
        self.texts: Dict[str, str] = dict(DEFAULT_TEXTS)
        self.department_instructions: Dict[str, str] = dict(DEFAULT_DEPARTMENT_INSTRUCTIONS)
        self._load_overrides()

    def _load_overrides(self) -> None:
        """Merge YAML overrides into the default catalog."""
        catalog_path = Path(self.catalog_file)

        if not catalog_path.exists():
            logger.debug(f"Text catalog {self.catalog_file} not found, using built-in texts")
            return

        try:
            with open(catalog_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error loading text catalog: {e}")
            return

        self.texts.update({k: str(v) for k, v in (data.get("texts") or {}).items()})
        self.department_instructions.update(
            {k: str(v) for k, v in (data.get("department_instructions") or {}).items()}
        )
        logger.info(f"Loaded text catalog overrides from {catalog_path}")

    def text(self, key: str, values: Optional[Mapping[str, Any]] = None) -> str:
        """
        Get a text by key with {placeholders} filled from values.

        Unknown keys render as the key itself so a missing entry is visible
        rather than fatal.
        """
        template = self.texts.get(key)
        if template is None:
            logger.warning(f"Missing catalog text {key}")
            return key
        return template.format_map(_TemplateValues(values or {}))

    def template_values(self, context: Mapping[str, Any]) -> Dict[str, Any]:
        """Flatten a session context into placeholder values."""
        values = {k: v for k, v in context.items() if k != "history"}
        history = context.get("history") or {}
        values["details"] = next((history[s] for s in DETAIL_STATES if history.get(s)), "")
        return values

    def render_node(self, node: FlowNode, context: Mapping[str, Any]) -> str:
        """Render a flow node as prompt text plus its numbered option list."""
        message = self.text(node.text_key, self.template_values(context))
        if node.options:
            lines = "\n".join(
                f"*{i}*. {self.text(option.text_key)}" for i, option in enumerate(node.options, start=1)
            )
            message += f"\n\n{lines}\n\n{self.text('optionInstruction')}"
        return message

    def system_instruction(self, department: Optional[str]) -> str:
        """System instruction for the assistant of a department."""
        if department and department in self.department_instructions:
            return self.department_instructions[department]
        return self.text("defaultSystemInstruction")
