"""Protocol layer: frame codec, capability parsing, file transfer and pseudo-HTTP commands."""

from .framing import Frame, build_frame, decode_frame, parse_frame
from .capabilities import parse_capabilities, parse_firmware_info
from .commands import CommandName, SequenceCounter, TransportKind, build_command, build_keepalive
from .parser import Response, parse_response, parse_response_payload, parse_status
from .transfer import MediaType, TransferIdAllocator, build_transfer_blocks, send_file
