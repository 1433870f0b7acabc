"""
Semantic contracts for the router diagnosis system.

This module defines immutable data structures that serve as contracts
between modules. These are NOT validators - they define shape and
semantics without enforcing rules. Graph-level validation lives in
DiagnosticGraph.

Design principles:
- Frozen dataclasses (immutable after creation)
- Tuples instead of lists, so nothing handed out can be mutated
- No dependencies on other project modules
- JSON round-trip via to_dict() / from_dict()

Contents:
- DiagnosticPhase, InputType, AllowedAction: fixed vocabularies
- EscalationConditions: per-node hand-off configuration
- DiagnosticNode: one scripted step of the diagnostic graph
- VendorProfile: router brand profile used for voice hints
- RouterAsset: illustrative asset descriptor from the asset catalog
- ExpectationWindow: what the voice loop listens for after speaking a node

Usage:
    from pathrag.contracts import DiagnosticNode, DiagnosticPhase
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class DiagnosticPhase(str, Enum):
    """
    Coarse-grained stage of the diagnosis.

    String-valued so phases serialize directly into session JSON.
    """
    ENTRY = "PHASE_0"
    PHYSICAL_LAYER = "PHASE_1"
    LOCAL_NETWORK = "PHASE_2"
    ROUTER_LOGIN = "PHASE_3"
    WAN_INSPECTION = "PHASE_4"
    CORRECTIVE_ACTIONS = "PHASE_5"
    VERIFICATION = "PHASE_6"
    ESCALATION = "PHASE_7"
    POST_SESSION = "PHASE_8"


PHASE_LABELS = {
    DiagnosticPhase.ENTRY: "Entry & Setup",
    DiagnosticPhase.PHYSICAL_LAYER: "Physical Check",
    DiagnosticPhase.LOCAL_NETWORK: "Network Check",
    DiagnosticPhase.ROUTER_LOGIN: "Router Access",
    DiagnosticPhase.WAN_INSPECTION: "WAN Status",
    DiagnosticPhase.CORRECTIVE_ACTIONS: "Fix Actions",
    DiagnosticPhase.VERIFICATION: "Verification",
    DiagnosticPhase.ESCALATION: "Escalation",
    DiagnosticPhase.POST_SESSION: "Complete",
}

# Phases that count towards progress, in order
PROGRESS_PHASES = (
    DiagnosticPhase.ENTRY,
    DiagnosticPhase.PHYSICAL_LAYER,
    DiagnosticPhase.LOCAL_NETWORK,
    DiagnosticPhase.ROUTER_LOGIN,
    DiagnosticPhase.WAN_INSPECTION,
    DiagnosticPhase.CORRECTIVE_ACTIONS,
    DiagnosticPhase.VERIFICATION,
)


class InputType(str, Enum):
    """Kind of answer a node expects from the user."""
    USER_OBSERVATION = "user_observation"
    USER_ACTION = "user_action"
    CONFIRMATION = "confirmation"
    SYSTEM_CHECK = "system_check"


class AllowedAction(str, Enum):
    """Corrective actions a node may ask the user to perform."""
    RECONNECT_SESSION = "RECONNECT_SESSION"
    SAVE_APPLY = "SAVE_APPLY"
    SOFT_REBOOT = "SOFT_REBOOT"
    RESEAT_CABLE = "RESEAT_CABLE"
    POWER_CYCLE = "POWER_CYCLE"
    RESET_CREDENTIALS = "RESET_CREDENTIALS"
    FACTORY_RESET = "FACTORY_RESET"


DEFAULT_MAX_RETRIES = 3


@dataclass(frozen=True)
class EscalationConditions:
    """
    Escalation configuration attached to a node.

    Attributes:
        user_uncertain: Escalate when the user says they are confused or
            cannot find what was described
        screen_mismatch: Escalate when the user says their screen or device
            does not look like the description
        retry_exceeded: Escalate as soon as the retry budget is used up,
            before trying to resolve the answer
        max_retries: Unmatched answers allowed at this node
    """
    user_uncertain: bool = False
    screen_mismatch: bool = False
    retry_exceeded: bool = False
    max_retries: int = DEFAULT_MAX_RETRIES

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_uncertain': self.user_uncertain,
            'screen_mismatch': self.screen_mismatch,
            'retry_exceeded': self.retry_exceeded,
            'max_retries': self.max_retries,
        }

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> "EscalationConditions":
        data = data or {}
        return EscalationConditions(
            user_uncertain=bool(data.get('user_uncertain', False)),
            screen_mismatch=bool(data.get('screen_mismatch', False)),
            retry_exceeded=bool(data.get('retry_exceeded', False)),
            max_retries=int(data.get('max_retries') or DEFAULT_MAX_RETRIES),
        )


@dataclass(frozen=True)
class DiagnosticNode:
    """
    Immutable diagnostic step, defined at build time.

    expected_answers is stored as a tuple of (answer_key, next_node_id)
    pairs so mapping order is preserved and the node stays hashable.
    Answer order matters: the answer resolver tests keys in this order
    and the first match wins.

    Attributes:
        node_id: Unique identifier (e.g., 'physical_power_led')
        phase: DiagnosticPhase the node belongs to
        input_type: What kind of answer is expected
        question: Short display text for the UI panel
        voice_instruction: Sentence the speech collaborator speaks
        expected_answers: Ordered (answer_key, next_node_id) pairs
        actions_allowed: Corrective actions permitted at this node
        escalation_conditions: Hand-off configuration
        terminal: True for nodes that end the conversation
        metadata: Free-form tags (category, vendor)
    """
    node_id: str
    phase: DiagnosticPhase
    input_type: InputType
    question: str
    voice_instruction: str
    expected_answers: Tuple[Tuple[str, str], ...] = ()
    actions_allowed: Tuple[AllowedAction, ...] = ()
    escalation_conditions: EscalationConditions = field(default_factory=EscalationConditions)
    terminal: bool = False
    metadata: Tuple[Tuple[str, str], ...] = ()

    @property
    def answer_keys(self) -> Tuple[str, ...]:
        """Answer keys in mapping order."""
        return tuple(key for key, _ in self.expected_answers)

    @property
    def answer_map(self) -> Dict[str, str]:
        """Fresh dict copy of answer_key -> next_node_id."""
        return dict(self.expected_answers)

    @property
    def max_retries(self) -> int:
        return self.escalation_conditions.max_retries

    @property
    def category(self) -> Optional[str]:
        return dict(self.metadata).get('category')

    def next_node_for(self, answer_key: str) -> Optional[str]:
        """Destination for an answer key, or None if the key is unknown."""
        return self.answer_map.get(answer_key)

    def to_dict(self) -> Dict[str, Any]:
        """Full node descriptor for API responses and snapshots."""
        return {
            'node_id': self.node_id,
            'phase': self.phase.value,
            'input_type': self.input_type.value,
            'question': self.question,
            'voice_instruction': self.voice_instruction,
            'expected_answers': self.answer_map,
            'actions_allowed': [action.value for action in self.actions_allowed],
            'escalation_conditions': self.escalation_conditions.to_dict(),
            'terminal': self.terminal,
            'metadata': dict(self.metadata),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "DiagnosticNode":
        """
        Build a node from its JSON form.

        Raises:
            KeyError: If a required field is missing
            ValueError: If phase, input_type or an action is unknown
        """
        return DiagnosticNode(
            node_id=data['node_id'],
            phase=DiagnosticPhase(data['phase']),
            input_type=InputType(data['input_type']),
            question=data['question'],
            voice_instruction=data['voice_instruction'],
            expected_answers=tuple(
                (str(key), str(value))
                for key, value in (data.get('expected_answers') or {}).items()
            ),
            actions_allowed=tuple(
                AllowedAction(action) for action in data.get('actions_allowed', [])
            ),
            escalation_conditions=EscalationConditions.from_dict(
                data.get('escalation_conditions')
            ),
            terminal=bool(data.get('terminal', False)),
            metadata=tuple(
                (str(key), str(value))
                for key, value in (data.get('metadata') or {}).items()
            ),
        )


@dataclass(frozen=True)
class VendorProfile:
    """
    Router vendor profile.

    Attributes:
        vendor_id: Stable identifier (e.g., 'tplink_4g', 'generic')
        name: Display name
        default_gateway: Usual router admin address
        login_page_path: Path of the admin login page
        supported_firmwares: Firmware families with curated assets
        led_indicators: (light, (state, ...)) pairs
        detection_keywords: Lower-case keywords that identify the vendor
        voice_notes: Extra hint spoken context for this router
        alt_gateway: Secondary admin address, if any
    """
    vendor_id: str
    name: str
    default_gateway: str
    login_page_path: str = "/"
    supported_firmwares: Tuple[str, ...] = ()
    led_indicators: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()
    detection_keywords: Tuple[str, ...] = ()
    voice_notes: str = ""
    alt_gateway: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vendor_id': self.vendor_id,
            'name': self.name,
            'default_gateway': self.default_gateway,
            'alt_gateway': self.alt_gateway,
            'login_page_path': self.login_page_path,
            'supported_firmwares': list(self.supported_firmwares),
            'led_indicators': {light: list(states) for light, states in self.led_indicators},
            'detection_keywords': list(self.detection_keywords),
            'voice_notes': self.voice_notes,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "VendorProfile":
        return VendorProfile(
            vendor_id=data['vendor_id'],
            name=data['name'],
            default_gateway=data['default_gateway'],
            alt_gateway=data.get('alt_gateway'),
            login_page_path=data.get('login_page_path', '/'),
            supported_firmwares=tuple(data.get('supported_firmwares', [])),
            led_indicators=tuple(
                (light, tuple(states))
                for light, states in (data.get('led_indicators') or {}).items()
            ),
            detection_keywords=tuple(
                keyword.lower() for keyword in data.get('detection_keywords', [])
            ),
            voice_notes=data.get('voice_notes', ''),
        )


@dataclass(frozen=True)
class RouterAsset:
    """
    Illustrative asset (screenshot, diagram) attached to a node.

    Attributes:
        asset_id: Unique identifier
        vendor: vendor_id the asset applies to, or 'generic'
        firmware: Firmware family, or 'generic'
        node_id: Node the asset illustrates
        type: 'screenshot', 'diagram', 'video' or 'document'
        url: Where the asset is served from
        alt_text: Spoken/display description
        landmarks: UI elements worth highlighting
    """
    asset_id: str
    vendor: str
    firmware: str
    node_id: str
    type: str
    url: str
    alt_text: str
    landmarks: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'asset_id': self.asset_id,
            'vendor': self.vendor,
            'firmware': self.firmware,
            'node_id': self.node_id,
            'type': self.type,
            'url': self.url,
            'alt_text': self.alt_text,
            'landmarks': list(self.landmarks),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any], base_url: str = "") -> "RouterAsset":
        url = data['url']
        if base_url and not url.startswith(('http://', 'https://', '/')):
            url = f"{base_url.rstrip('/')}/{url}"
        return RouterAsset(
            asset_id=data['asset_id'],
            vendor=data.get('vendor', 'generic'),
            firmware=data.get('firmware', 'generic'),
            node_id=data['node_id'],
            type=data.get('type', 'diagram'),
            url=url,
            alt_text=data.get('alt_text', ''),
            landmarks=tuple(data.get('landmarks', [])),
        )


@dataclass(frozen=True)
class ExpectationWindow:
    """
    What the voice loop expects right after speaking a node.

    Derived deterministically from the node; never persisted and never
    reused across node transitions.

    Attributes:
        slot: node_id this window governs
        allowed_values: Answer keys of the node
        timeout: Seconds to wait for an answer
        noise_threshold: 'low', 'medium' or 'high'
        retries: Failed attempts allowed before escalation
    """
    slot: str
    allowed_values: Tuple[str, ...]
    timeout: float
    noise_threshold: str
    retries: int
