"""
Wire Codec
==========

Validates and decodes the JSON bodies stored in the message log into the
immutable report and document contracts.

GUARANTEES:
- Decoding is strict: unknown fields and wrong types are rejected
- A body that fails validation raises MessageDecodeError, never returns
  a partially filled object
- encode_* produces bodies that decode back to equal contracts
"""

from __future__ import annotations
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..contracts.mdib import Descriptor, MdibVersion, State
from ..contracts.messages import CapturedMessage
from ..contracts.reports import (
    GET_MDIB_RESPONSE, MdibDocument, ModificationKind, Report, ReportKind, ReportPart
)


class MessageDecodeError(ValueError):
    """A stored body could not be decoded."""

    def __init__(self, message: str, message_id: Optional[str] = None):
        super().__init__(message)
        self.message_id = message_id


_WIRE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    extra="forbid",
    frozen=True,
)


# =============================================================================
# WIRE MODELS
# =============================================================================

class MdibVersionModel(BaseModel):
    model_config = _WIRE_CONFIG

    sequence_id: str = Field(..., min_length=1)
    instance_id: int = 0
    version: int = Field(0, ge=0)


class DescriptorModel(BaseModel):
    model_config = _WIRE_CONFIG

    handle: str = Field(..., min_length=1)
    descriptor_type: str = Field(..., alias="type")
    descriptor_version: int = 0
    parent_handle: Optional[str] = None
    attributes: Dict[str, str] = Field(default_factory=dict)


class StateModel(BaseModel):
    model_config = _WIRE_CONFIG

    descriptor_handle: str = Field(..., min_length=1)
    state_type: str = Field(..., alias="type")
    state_version: int = 0
    handle: Optional[str] = None
    descriptor_version: int = 0
    attributes: Dict[str, str] = Field(default_factory=dict)


class ReportPartModel(BaseModel):
    model_config = _WIRE_CONFIG

    modification: Optional[ModificationKind] = None
    parent_handle: Optional[str] = None
    descriptors: List[DescriptorModel] = Field(default_factory=list)
    states: List[StateModel] = Field(default_factory=list)


class ReportModel(BaseModel):
    model_config = _WIRE_CONFIG

    mdib_version: MdibVersionModel
    description_version: Optional[int] = None
    state_version: Optional[int] = None
    parts: List[ReportPartModel] = Field(default_factory=list)


class DocumentModel(BaseModel):
    model_config = _WIRE_CONFIG

    mdib_version: MdibVersionModel
    description_version: int = 0
    state_version: int = 0
    descriptors: List[DescriptorModel] = Field(default_factory=list)
    states: List[StateModel] = Field(default_factory=list)


# =============================================================================
# MAPPING
# =============================================================================

def _version(model: MdibVersionModel) -> MdibVersion:
    return MdibVersion(
        sequence_id=model.sequence_id,
        instance_id=model.instance_id,
        version=model.version,
    )


def _descriptor(model: DescriptorModel) -> Descriptor:
    return Descriptor(
        handle=model.handle,
        descriptor_type=model.descriptor_type,
        descriptor_version=model.descriptor_version,
        parent_handle=model.parent_handle,
        attributes=tuple(sorted(model.attributes.items())),
    )


def _state(model: StateModel) -> State:
    return State(
        descriptor_handle=model.descriptor_handle,
        state_type=model.state_type,
        state_version=model.state_version,
        handle=model.handle,
        descriptor_version=model.descriptor_version,
        attributes=tuple(sorted(model.attributes.items())),
    )


def _version_model(version: MdibVersion) -> MdibVersionModel:
    return MdibVersionModel(
        sequence_id=version.sequence_id,
        instance_id=version.instance_id,
        version=version.version,
    )


def _descriptor_model(descriptor: Descriptor) -> DescriptorModel:
    return DescriptorModel(
        handle=descriptor.handle,
        descriptor_type=descriptor.descriptor_type,
        descriptor_version=descriptor.descriptor_version,
        parent_handle=descriptor.parent_handle,
        attributes=dict(descriptor.attributes),
    )


def _state_model(state: State) -> StateModel:
    return StateModel(
        descriptor_handle=state.descriptor_handle,
        state_type=state.state_type,
        state_version=state.state_version,
        handle=state.handle,
        descriptor_version=state.descriptor_version,
        attributes=dict(state.attributes),
    )


# =============================================================================
# PUBLIC API
# =============================================================================

def decode_report(message: CapturedMessage) -> Report:
    """Decode a captured report body; the kind comes from the body type."""
    try:
        kind = ReportKind.from_body_type(message.body_type)
        model = ReportModel.model_validate_json(message.body)
    except (ValidationError, ValueError) as exc:
        raise MessageDecodeError(
            f"Cannot decode {message.body_type} message {message.message_id}: {exc}",
            message.message_id,
        ) from exc

    return Report(
        kind=kind,
        mdib_version=_version(model.mdib_version),
        parts=tuple(
            ReportPart(
                descriptors=tuple(_descriptor(d) for d in part.descriptors),
                states=tuple(_state(s) for s in part.states),
                modification=part.modification,
                parent_handle=part.parent_handle,
            )
            for part in model.parts
        ),
        description_version=model.description_version,
        state_version=model.state_version,
    )


def decode_document(message: CapturedMessage) -> MdibDocument:
    """Decode a captured full-MDIB response body."""
    if message.body_type != GET_MDIB_RESPONSE:
        raise MessageDecodeError(
            f"Message {message.message_id} is a {message.body_type}, not a full MDIB",
            message.message_id,
        )
    try:
        model = DocumentModel.model_validate_json(message.body)
    except ValidationError as exc:
        raise MessageDecodeError(
            f"Cannot decode full MDIB message {message.message_id}: {exc}",
            message.message_id,
        ) from exc

    return MdibDocument(
        mdib_version=_version(model.mdib_version),
        descriptors=tuple(_descriptor(d) for d in model.descriptors),
        states=tuple(_state(s) for s in model.states),
        description_version=model.description_version,
        state_version=model.state_version,
    )


def encode_report(report: Report) -> str:
    model = ReportModel(
        mdib_version=_version_model(report.mdib_version),
        description_version=report.description_version,
        state_version=report.state_version,
        parts=[
            ReportPartModel(
                modification=part.modification,
                parent_handle=part.parent_handle,
                descriptors=[_descriptor_model(d) for d in part.descriptors],
                states=[_state_model(s) for s in part.states],
            )
            for part in report.parts
        ],
    )
    return model.model_dump_json(by_alias=True)


def encode_document(document: MdibDocument) -> str:
    model = DocumentModel(
        mdib_version=_version_model(document.mdib_version),
        description_version=document.description_version,
        state_version=document.state_version,
        descriptors=[_descriptor_model(d) for d in document.descriptors],
        states=[_state_model(s) for s in document.states],
    )
    return model.model_dump_json(by_alias=True)
