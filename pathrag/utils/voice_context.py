"""
Voice Context Builder - structured text handed to the speech collaborator

Responsibilities:
- Describe the current node (id, phase, task)
- List the answers worth listening for
- Add vendor hints and previous observations
- Add confusion guidance when the node escalates on uncertainty

Design principles:
- Deterministic: same node and session always give the same text
- Stateless: no side effects, no generation, only templated sections
"""

from typing import Dict, List, Optional

from pathrag.contracts import PHASE_LABELS, DiagnosticNode, VendorProfile


class VoiceContextBuilder:
    """Build the per-node context block the voice agent speaks from."""

    RULES = (
        "- Speak the instruction above naturally",
        "- Wait for the user to respond",
        "- If they seem confused, rephrase the instruction more simply",
        "- Do NOT move to the next step until they confirm",
    )

    def build(self,
              node: DiagnosticNode,
              observations: Optional[Dict[str, str]] = None,
              vendor_profile: Optional[VendorProfile] = None) -> str:
        """
        Build voice context for a node.

        Args:
            node: Current diagnostic node
            observations: node_id -> latest user response
            vendor_profile: Detected router profile, if any

        Returns:
            str: Multi-section plain-text context
        """
        phase_label = PHASE_LABELS.get(node.phase, node.phase.value)
        sections: List[str] = [
            f"NODE_ID: {node.node_id}\nPHASE: {phase_label}",
            f"YOUR TASK: {node.voice_instruction}",
        ]

        keys = node.answer_keys
        if keys:
            listen_for = "\n".join(f'- "{key}" or similar' for key in keys)
            rules = list(self.RULES)
            rules.insert(2, f'- If they say something like "{keys[0]}", that\'s a valid answer')
            sections.append(f"WHAT TO LISTEN FOR:\n{listen_for}")
            sections.append("RULES FOR THIS STEP:\n" + "\n".join(rules))

        if vendor_profile is not None:
            sections.append(self._vendor_section(vendor_profile))

        if observations:
            lines = "\n".join(f'- {node_id}: "{value}"' for node_id, value in observations.items())
            sections.append(f"PREVIOUS OBSERVATIONS:\n{lines}")

        if node.escalation_conditions.user_uncertain:
            sections.append(
                "IF USER IS CONFUSED: Reassure them and rephrase. If still stuck, you can escalate."
            )

        return "\n\n".join(sections)

    def _vendor_section(self, profile: VendorProfile) -> str:
        lines = [f"ROUTER: {profile.name}", f"ADMIN ADDRESS: {profile.default_gateway}"]
        if profile.alt_gateway:
            lines[-1] += f" (or {profile.alt_gateway})"
        if profile.voice_notes:
            lines.append(f"NOTE: {profile.voice_notes}")
        return "\n".join(lines)
