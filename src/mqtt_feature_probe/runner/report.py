"""
Result Rendering.

Turns the results of a probe suite into lines for the terminal, or into
one JSON document for machines.
"""
import json
from typing import Any, Dict, List

from mqtt_feature_probe.probe.models import (
    ClientIdCharactersResult,
    ConnectResult,
    DiscoveryResult,
    ProbeOutcome,
    QosResult,
    ResultBase,
    WildcardResult,
)

TITLES = {
    "connect": "Connect",
    "topic_length": "Maximum topic length",
    "client_id_length": "Maximum client id length",
    "client_id_characters": "Client id characters",
    "shared_subscription": "Shared subscriptions",
    "retain": "Retained messages",
    "wildcards": "Wildcard subscriptions",
    "qos_0": "QoS 0",
    "qos_1": "QoS 1",
    "qos_2": "QoS 2",
    "payload_size": "Maximum payload size",
}


def render_report(results: Dict[str, ResultBase]) -> List[str]:
    lines: List[str] = []
    for name, result in results.items():
        title = TITLES.get(name, name)
        lines.extend(_render(title, result))
    return lines


def render_json(results: Dict[str, ResultBase]) -> str:
    return json.dumps({name: result.to_dict() for name, result in results.items()}, indent=2)


def _render(title: str, result: Any) -> List[str]:
    if isinstance(result, ConnectResult):
        lines = [f"{title}: {result.outcome}"]
        if result.ack is not None:
            for key, value in sorted(result.ack.properties.items()):
                lines.append(f"  - {key}: {value}")
        return lines

    if isinstance(result, DiscoveryResult):
        lines = [f"{title}: {result.boundary} (largest confirmed: {result.confirmed_boundary})"]
        failed = [trial for trial in result.trials if not trial.outcome.ok]
        for trial in failed:
            lines.append(f"  - {trial.size}: {trial.outcome}")
        return lines

    if isinstance(result, QosResult):
        return [f"{title}: received {result.received}/{result.tries} in {result.elapsed * 1000:.0f}ms ({result.outcome})"]

    if isinstance(result, WildcardResult):
        return [
            f"{title}:",
            f"  - '+': {result.single_level}",
            f"  - '#': {result.multi_level}",
        ]

    if isinstance(result, ClientIdCharactersResult):
        if result.all_accepted:
            return [f"{title}: all accepted"]
        lines = [f"{title}: {len(result.rejected)} of {len(result.characters)} refused"]
        for character in result.rejected:
            lines.append(f"  - {character.character!r}: {character.outcome}")
        return lines

    if isinstance(result, ProbeOutcome):
        return [f"{title}: {result}"]

    return [f"{title}: {result}"]
