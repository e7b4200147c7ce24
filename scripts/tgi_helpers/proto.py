"""Protocol buffer messages for the shard control RPCs.

The shards serve ``generate.v1.TextGenerationService`` over gRPC. Only the RPCs the
bootstrap needs are described here: ``Info`` to attach a shard, ``ServiceDiscovery``
to list the shards behind the master socket, and ``ClearCache`` to reset them. The
message classes are built from a descriptor at import time, so no generated code is
needed. Field numbers match the server's ``generate.proto``.
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "generate.v1"
SERVICE_NAME = f"{PACKAGE}.TextGenerationService"

_Field = descriptor_pb2.FieldDescriptorProto


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    """Describe the control messages as a proto3 file.

    Returns:
        The file descriptor proto.
    """
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="tgi_benchmark/generate_control.proto", package=PACKAGE, syntax="proto3"
    )

    file_proto.message_type.add(name="InfoRequest")
    info = file_proto.message_type.add(name="InfoResponse")
    info.field.add(
        name="requires_padding", number=1, type=_Field.TYPE_BOOL, label=_Field.LABEL_OPTIONAL
    )
    info.field.add(name="dtype", number=2, type=_Field.TYPE_STRING, label=_Field.LABEL_OPTIONAL)
    info.field.add(
        name="device_type", number=3, type=_Field.TYPE_STRING, label=_Field.LABEL_OPTIONAL
    )

    file_proto.message_type.add(name="ServiceDiscoveryRequest")
    discovery = file_proto.message_type.add(name="ServiceDiscoveryResponse")
    discovery.field.add(
        name="urls", number=1, type=_Field.TYPE_STRING, label=_Field.LABEL_REPEATED
    )

    # `optional uint64 id = 1;`: proto3 optional is a synthetic single-field oneof
    clear = file_proto.message_type.add(name="ClearCacheRequest")
    clear.oneof_decl.add(name="_id")
    clear.field.add(
        name="id",
        number=1,
        type=_Field.TYPE_UINT64,
        label=_Field.LABEL_OPTIONAL,
        oneof_index=0,
        proto3_optional=True,
    )
    file_proto.message_type.add(name="ClearCacheResponse")

    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file().SerializeToString())


def _message(name: str) -> type:
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.{name}"))


InfoRequest = _message("InfoRequest")
InfoResponse = _message("InfoResponse")
ServiceDiscoveryRequest = _message("ServiceDiscoveryRequest")
ServiceDiscoveryResponse = _message("ServiceDiscoveryResponse")
ClearCacheRequest = _message("ClearCacheRequest")
ClearCacheResponse = _message("ClearCacheResponse")

# RPC name -> (request class, response class)
METHODS: dict[str, tuple[type, type]] = {
    "Info": (InfoRequest, InfoResponse),
    "ServiceDiscovery": (ServiceDiscoveryRequest, ServiceDiscoveryResponse),
    "ClearCache": (ClearCacheRequest, ClearCacheResponse),
}


def method_path(name: str) -> str:
    """Full gRPC method path for an RPC of the text generation service."""
    return f"/{SERVICE_NAME}/{name}"
