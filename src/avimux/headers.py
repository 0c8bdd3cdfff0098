"""
In-memory AVI header model and its little-endian byte layouts.

Each structured type owns a ``struct.Struct`` describing its exact on-disk
layout and converts to and from bytes explicitly, so the encoding never depends
on host byte order or structure padding.
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass, field
from typing import ClassVar

from .errors import InvalidArgumentError
from .riff import U32_MAX, as_fourcc

AVIF_HASINDEX = 0x00000010
AVIF_MUSTUSEINDEX = 0x00000020
AVIF_ISINTERLEAVED = 0x00000100

WAVE_FORMAT_PCM = 1
BITMAPINFOHEADER_SIZE = 40
DEFAULT_BITS_PER_PIXEL = 24

# Codecs whose frame buffers are sized as planar 4:2:0 (12 bits per pixel).
_TWELVE_BIT_FOURCCS = frozenset({b"I420", b"X264", b"H265"})

KNOWN_FOURCCS = frozenset(
    code.encode("ascii")
    for code in (
        "3IV1 3IV2 8BPS AASC ABYR ADV1 ADVJ AEMI AFLC AFLI AJPG AMPG ANIM AP41 "
        "ASLC ASV1 ASV2 ASVX AUR2 AURA AVC1 AVRN BA81 BINK BLZ0 BT20 BTCV BW10 "
        "BYR1 BYR2 CC12 CDVC CFCC CGDI CHAM CJPG CMYK CPLA CRAM CSCD CTRX CVID "
        "CWLT CXY1 CXY2 CYUV CYUY D261 D263 DAVC DCL1 DCL2 DCL3 DCL4 DCL5 DIV3 "
        "DIV4 DIV5 DIVX DM4V DMB1 DMB2 DMK2 DSVD DUCK DV25 DV50 DVAN DVCS DVE2 "
        "DVH1 DVHD DVSD DVSL DVX1 DVX2 DVX3 DX50 DXGM DXTC DXTN EKQ0 ELK0 EM2V "
        "ES07 ESCP ETV1 ETV2 ETVC FFV1 FLJP FMP4 FMVC FPS1 FRWA FRWD FVF1 GEOX "
        "GJPG GLZW GPEG GWLT H260 H261 H262 H263 H264 H265 H266 H267 H268 H269 "
        "HDYC HFYU HMCR HMRR I263 I420 IAN ICLB IGOR IJPG ILVC ILVR IPDV IR21 "
        "IRAW ISME IV30 IV31 IV32 IV33 IV34 IV35 IV36 IV37 IV38 IV39 IV40 IV41 "
        "IV42 IV43 IV44 IV45 IV46 IV47 IV48 IV49 IV50 JBYR JPEG JPGL KMVC "
        "L261 L263 LBYR LCMW LCW2 LEAD LGRY LJ11 LJ22 LJ2K LJ44 LJPG LMP2 LMP4 "
        "LSVC LSVM LSVX LZO1 M261 M263 M4CC M4S2 MC12 MCAM MJ2C MJPG MMES MP2A "
        "MP2T MP2V MP42 MP43 MP4A MP4S MP4T MP4V MPEG MPNG MPG4 MPGI MR16 MRCA "
        "MRLE MSVC MSZH MTX1 MTX2 MTX3 MTX4 MTX5 MTX6 MTX7 MTX8 MTX9 MVI1 MVI2 "
        "MWV1 NAVI NDSC NDSM NDSP NDSS NDXC NDXH NDXP NDXS NHVU NTN1 NTN2 NVDS "
        "NVHS NVS0 NVS1 NVS2 NVS3 NVS4 NVS5 NVT0 NVT1 NVT2 NVT3 NVT4 NVT5 PDVC "
        "PGVV PHMO PIM1 PIM2 PIMJ PIXL PJPG PVEZ PVMM PVW2 QPEG QPEQ RGBT RLE "
        "RLE4 RLE8 RMP4 RPZA RT21 RV20 RV30 RV40 S422 SAN3 SDCC SEDG SFMC SMP4 "
        "SMSC SMSD SMSV SP40 SP44 SP54 SPIG SQZ2 SV10 SLMJ STVA STVB STVC STVX "
        "STVY SVQ1 SVQ3 TLMS TLST TM20 TM2X TMIC TMOT TR20 TSCC TV10 TVJP TVMJ "
        "TY0N TY2C TY2N UCOD ULTI V210 V261 V655 VCR1 VCR2 VCR3 VCR4 VCR5 VCR6 "
        "VCR7 VCR8 VCR9 VDCT VDOM VDTZ VGPX VIDS VIFP VIVO VIXL VLV1 VP30 VP31 "
        "VP40 VP50 VP60 VP61 VP62 VP70 VP80 VQC1 VQC2 VQJC VSSV VUUU VX1K VX2K "
        "VXSP VYU9 VYUY WBVC WHAM WINX WJPG WMV1 WMV2 WMV3 WMVA WNV1 WVC1 X263 "
        "X264 XLV0 XMPG XVID XWV0 XWV1 XWV2 XWV3 XWV4 XWV5 XWV6 XWV7 XWV8 XWV9 "
        "XXAN Y16 Y411 Y41P Y444 Y8 YC12 YUV8 YUV9 YUVP YUY2 YUYV YV12 YV16 YV92 "
        "ZLIB ZMBV ZPEG ZYGO ZYYY"
    ).split()
)


def check_fourcc(fourcc: str | bytes) -> bool:
    """Return True when *fourcc* is a well-formed, recognised codec tag."""
    raw = fourcc.encode("ascii", errors="replace") if isinstance(fourcc, str) else bytes(fourcc)
    if len(raw) != 4 or not all(32 <= byte < 127 for byte in raw):
        return False
    return raw.rstrip(b" ") in KNOWN_FOURCCS or raw in KNOWN_FOURCCS


def bits_per_pixel_for(fourcc: str | bytes) -> int:
    """Bit depth used to size frame buffers for *fourcc*."""
    return 12 if as_fourcc(fourcc) in _TWELVE_BIT_FOURCCS else DEFAULT_BITS_PER_PIXEL


def frame_interval_us(fps: float) -> int:
    """Microseconds per frame, rounded half up."""
    if not math.isfinite(fps) or fps < 1:
        raise InvalidArgumentError(f"fps must be a finite number >= 1, got {fps}")
    return int(1_000_000.0 / fps + 0.5)


def frame_buffer_size(width: int, height: int, bits_per_pixel: int) -> int:
    return (width * height * bits_per_pixel) // 8


def _u32(value: int) -> int:
    return min(max(int(value), 0), U32_MAX)


@dataclass
class MainHeader:
    """The ``avih`` chunk: file-wide timing, size and stream count."""

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<14I")

    micro_sec_per_frame: int = 0
    max_bytes_per_sec: int = 0
    padding_granularity: int = 0
    flags: int = AVIF_HASINDEX
    total_frames: int = 0
    initial_frames: int = 0
    streams: int = 1
    suggested_buffer_size: int = 0
    width: int = 0
    height: int = 0

    def pack(self) -> bytes:
        return self.STRUCT.pack(
            _u32(self.micro_sec_per_frame),
            _u32(self.max_bytes_per_sec),
            self.padding_granularity,
            self.flags,
            _u32(self.total_frames),
            self.initial_frames,
            self.streams,
            _u32(self.suggested_buffer_size),
            self.width,
            self.height,
            0,
            0,
            0,
            0,
        )

    @classmethod
    def unpack(cls, data: bytes) -> MainHeader:
        values = cls.STRUCT.unpack_from(data)
        return cls(*values[:10])

    @property
    def has_index(self) -> bool:
        return bool(self.flags & AVIF_HASINDEX)


@dataclass
class StreamHeader:
    """The ``strh`` chunk describing one stream."""

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<4s4sIHHIIIIIIiIhhhh")

    media_type: bytes = b"vids"
    codec: bytes = b"\0\0\0\0"
    flags: int = 0
    priority: int = 0
    language: int = 0
    initial_frames: int = 0
    time_scale: int = 0
    data_rate: int = 0
    start: int = 0
    length: int = 0
    suggested_buffer_size: int = 0
    quality: int = -1
    sample_size: int = 0
    frame_left: int = 0
    frame_top: int = 0
    frame_right: int = 0
    frame_bottom: int = 0

    def pack(self) -> bytes:
        return self.STRUCT.pack(
            as_fourcc(self.media_type),
            as_fourcc(self.codec),
            self.flags,
            self.priority,
            self.language,
            self.initial_frames,
            _u32(self.time_scale),
            _u32(self.data_rate),
            self.start,
            _u32(self.length),
            _u32(self.suggested_buffer_size),
            self.quality,
            self.sample_size,
            _i16(self.frame_left),
            _i16(self.frame_top),
            _i16(self.frame_right),
            _i16(self.frame_bottom),
        )

    @classmethod
    def unpack(cls, data: bytes) -> StreamHeader:
        return cls(*cls.STRUCT.unpack_from(data))


def _i16(value: int) -> int:
    # frame_rect is signed 16-bit; very large frames are clipped rather than wrapped
    return max(-0x8000, min(int(value), 0x7FFF))


@dataclass
class VideoFormat:
    """BITMAPINFOHEADER stored in the video ``strf`` chunk, plus optional palette."""

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<IiiHH4sIiiII")

    width: int = 0
    height: int = 0
    planes: int = 1
    bits_per_pixel: int = DEFAULT_BITS_PER_PIXEL
    compression: bytes = b"\0\0\0\0"
    image_size: int = 0
    x_pels_per_meter: int = 0
    y_pels_per_meter: int = 0
    colors_used: int = 0
    colors_important: int = 0
    palette: bytes = b""

    def pack(self) -> bytes:
        header = self.STRUCT.pack(
            BITMAPINFOHEADER_SIZE,
            self.width,
            self.height,
            self.planes,
            self.bits_per_pixel,
            as_fourcc(self.compression),
            _u32(self.image_size),
            self.x_pels_per_meter,
            self.y_pels_per_meter,
            self.colors_used,
            self.colors_important,
        )
        return header + self.palette

    @classmethod
    def unpack(cls, data: bytes) -> VideoFormat:
        (
            header_size,
            width,
            height,
            planes,
            bits_per_pixel,
            compression,
            image_size,
            x_pels,
            y_pels,
            colors_used,
            colors_important,
        ) = cls.STRUCT.unpack_from(data)
        return cls(
            width=width,
            height=height,
            planes=planes,
            bits_per_pixel=bits_per_pixel,
            compression=compression,
            image_size=image_size,
            x_pels_per_meter=x_pels,
            y_pels_per_meter=y_pels,
            colors_used=colors_used,
            colors_important=colors_important,
            palette=bytes(data[header_size:header_size + 4 * colors_used]),
        )


@dataclass
class AudioFormat:
    """WAVEFORMATEX stored in the audio ``strf`` chunk."""

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<HHIIHHH")

    format_tag: int = WAVE_FORMAT_PCM
    channels: int = 1
    sample_rate: int = 0
    bytes_per_second: int = 0
    block_align: int = 0
    bits_per_sample: int = 16
    extra_size: int = 0

    def pack(self) -> bytes:
        return self.STRUCT.pack(
            self.format_tag,
            self.channels,
            self.sample_rate,
            self.bytes_per_second,
            self.block_align,
            self.bits_per_sample,
            self.extra_size,
        )

    @classmethod
    def unpack(cls, data: bytes) -> AudioFormat:
        return cls(*cls.STRUCT.unpack_from(data))


@dataclass
class OdmlHeader:
    """The ``dmlh`` chunk of the OpenDML extended header."""

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<I244x")

    total_frames: int = 0

    def pack(self) -> bytes:
        return self.STRUCT.pack(_u32(self.total_frames))

    @classmethod
    def unpack(cls, data: bytes) -> OdmlHeader:
        return cls(*cls.STRUCT.unpack_from(data))


@dataclass(frozen=True)
class AudioConfig:
    """PCM parameters of the optional interleaved audio stream."""

    channels: int = 2
    bits: int = 16
    samples_per_second: int = 44_100

    def __post_init__(self) -> None:
        if self.channels < 1:
            raise InvalidArgumentError("audio channels must be >= 1")
        if self.bits < 8 or self.bits % 8 != 0:
            raise InvalidArgumentError("audio bits per sample must be a positive multiple of 8")
        if self.samples_per_second < 1:
            raise InvalidArgumentError("audio sample rate must be >= 1")

    @property
    def block_align(self) -> int:
        return self.channels * (self.bits // 8)

    @property
    def bytes_per_second(self) -> int:
        return self.block_align * self.samples_per_second


@dataclass
class StreamDescriptor:
    """Header and format state for one stream, serialized as a ``strl`` LIST."""

    header: StreamHeader
    video_format: VideoFormat | None = None
    audio_format: AudioFormat | None = None

    @property
    def is_video(self) -> bool:
        return self.video_format is not None

    def format_bytes(self) -> bytes:
        if self.video_format is not None:
            return self.video_format.pack()
        if self.audio_format is not None:
            return self.audio_format.pack()
        return b""


def build_video_descriptor(
    width: int,
    height: int,
    fourcc: bytes,
    interval_us: int,
    bits_per_pixel: int,
    palette: bytes = b"",
) -> StreamDescriptor:
    size = frame_buffer_size(width, height, bits_per_pixel)
    header = StreamHeader(
        media_type=b"vids",
        codec=fourcc,
        time_scale=interval_us,
        data_rate=1_000_000,
        suggested_buffer_size=size,
        quality=0,
        frame_right=width,
        frame_bottom=height,
    )
    video_format = VideoFormat(
        width=width,
        height=height,
        bits_per_pixel=bits_per_pixel,
        compression=fourcc,
        image_size=size,
        colors_used=len(palette) // 4,
        palette=palette,
    )
    return StreamDescriptor(header=header, video_format=video_format)


def build_audio_descriptor(audio: AudioConfig) -> StreamDescriptor:
    header = StreamHeader(
        media_type=b"auds",
        codec=b"\x01\0\0\0",
        time_scale=1,
        data_rate=audio.samples_per_second,
        suggested_buffer_size=audio.bytes_per_second,
        quality=-1,
        sample_size=audio.block_align,
    )
    audio_format = AudioFormat(
        channels=audio.channels,
        sample_rate=audio.samples_per_second,
        bytes_per_second=audio.bytes_per_second,
        block_align=audio.block_align,
        bits_per_sample=audio.bits,
    )
    return StreamDescriptor(header=header, audio_format=audio_format)


@dataclass
class FileHeader:
    """File-level header state owned by the writer: ``avih`` plus its streams."""

    main: MainHeader = field(default_factory=MainHeader)
    video: StreamDescriptor | None = None
    audio: StreamDescriptor | None = None
