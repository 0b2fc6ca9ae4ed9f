from typing import Any, NotRequired, TypedDict, Union

Properties = dict[str, Any]


class ParameterDefinition(TypedDict):
    Type: str
    Default: NotRequired[Any]
    AllowedValues: NotRequired[list[Any]]
    AllowedPattern: NotRequired[str]
    Description: NotRequired[str]
    ConstraintDescription: NotRequired[str]
    MinLength: NotRequired[int]
    MaxLength: NotRequired[int]
    MinValue: NotRequired[Union[int, float, str]]
    MaxValue: NotRequired[Union[int, float, str]]
    NoEcho: NotRequired[Union[bool, str]]


class ResourceDefinition(TypedDict):
    Type: str
    Properties: NotRequired[Properties]
    DependsOn: NotRequired[Union[str, list[str]]]
    Condition: NotRequired[str]
    DeletionPolicy: NotRequired[str]


class OutputExport(TypedDict):
    Name: Any


class OutputDefinition(TypedDict):
    Value: Any
    Description: NotRequired[str]
    Condition: NotRequired[str]
    Export: NotRequired[OutputExport]


class RawTemplate(TypedDict):
    AWSTemplateFormatVersion: NotRequired[str]
    Description: NotRequired[str]
    Metadata: NotRequired[dict]
    Parameters: NotRequired[dict[str, ParameterDefinition]]
    Mappings: NotRequired[dict[str, dict[str, dict[str, Any]]]]
    Conditions: NotRequired[dict[str, Any]]
    Resources: dict[str, ResourceDefinition]
    Outputs: NotRequired[dict[str, OutputDefinition]]
