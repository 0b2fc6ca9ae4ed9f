import json
import logging
from typing import Any

import yaml

from stackrecon.engine.errors import InvalidTemplateError
from stackrecon.engine.types import RawTemplate

LOG = logging.getLogger(__name__)

# tags of the short form intrinsic functions that are not prefixed with "Fn::"
UNPREFIXED_TAGS = ("Ref", "Condition")


class NoDatesSafeLoader(yaml.SafeLoader):
    """SafeLoader that keeps timestamps (e.g. ``AWSTemplateFormatVersion: 2010-09-09``) as plain strings"""


NoDatesSafeLoader.yaml_implicit_resolvers = {
    key: [resolver for resolver in resolvers if resolver[0] != "tag:yaml.org,2002:timestamp"]
    for key, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def yaml_tag_constructor(loader: yaml.Loader, tag: str, node: yaml.Node) -> dict:
    """Convert short form intrinsic functions like ``!GetAtt Lb.DNSName`` into their long form"""
    function = tag.lstrip("!")
    key = function if function in UNPREFIXED_TAGS else f"Fn::{function}"

    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
        if function == "GetAtt" and isinstance(value, str):
            value = value.split(".", 1)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)

    return {key: value}


NoDatesSafeLoader.add_multi_constructor("!", yaml_tag_constructor)


def parse_template(template_body: str) -> RawTemplate:
    """Parse a template given as JSON or YAML document."""
    if not template_body or not template_body.strip():
        raise InvalidTemplateError("Template body is empty", operation="parse")

    try:
        template = json.loads(template_body)
    except ValueError:
        try:
            template = yaml.load(template_body, Loader=NoDatesSafeLoader)
        except yaml.YAMLError as e:
            raise InvalidTemplateError(f"Template format error: {e}", operation="parse") from e

    validate_template_structure(template)
    return template


def validate_template_structure(template: Any) -> None:
    if not isinstance(template, dict):
        raise InvalidTemplateError(
            "Template format error: template must be a JSON or YAML object", operation="parse"
        )

    resources = template.get("Resources")
    if not resources or not isinstance(resources, dict):
        raise InvalidTemplateError(
            "Template format error: at least one Resources member must be defined",
            operation="parse",
        )

    for logical_id, definition in resources.items():
        if not isinstance(definition, dict) or not isinstance(definition.get("Type"), str):
            raise InvalidTemplateError(
                f"Template format error: resource {logical_id} must declare a Type",
                logical_resource_id=logical_id,
                operation="parse",
            )

    for section in ("Parameters", "Mappings", "Conditions", "Outputs"):
        if section in template and not isinstance(template[section], dict):
            raise InvalidTemplateError(
                f"Template format error: {section} must be an object", operation="parse"
            )
