"""
IP 범위 파싱 및 검증 모듈
CIDR(192.168.1.240/28) 및 범위(192.168.1.200-192.168.1.210) 표기 지원

주의: 프리픽스 길이 0은 빈 마스크가 되어 모든 주소와 일치합니다.
0.0.0.0/0 입력은 전체 주소 공간을 허용하게 되므로 입력 시 주의가 필요합니다.
"""

import re
from dataclasses import dataclass
from typing import List, Union

from .errors import MalformedRange

_QUAD = r"(\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})"
_ADDRESS_RE = re.compile(rf"^{_QUAD}$")
_CIDR_RE = re.compile(rf"^{_QUAD}/(\d{{1,2}})$")
_BOUNDED_RE = re.compile(rf"^{_QUAD}-{_QUAD}$")

MAX_ADDRESS = 0xFFFFFFFF


def is_valid_address(text: str) -> bool:
    """점 구분 IPv4 주소 형식 및 옥텟 범위 확인"""
    match = _ADDRESS_RE.match(text or "")
    if not match:
        return False
    return all(int(octet) <= 255 for octet in text.split("."))


def address_to_int(address: str) -> int:
    """점 구분 IPv4 주소를 부호 없는 32비트 정수로 변환 (빅엔디언)"""
    if not is_valid_address(address):
        raise MalformedRange(address, "not a dotted-quad IPv4 address")
    a, b, c, d = (int(octet) for octet in address.split("."))
    return (a << 24) | (b << 16) | (c << 8) | d


def int_to_address(value: int) -> str:
    """32비트 정수를 점 구분 IPv4 주소로 변환"""
    if not 0 <= value <= MAX_ADDRESS:
        raise ValueError(f"{value} is outside the 32-bit address space")
    return ".".join(str((value >> shift) & 0xFF) for shift in (24, 16, 8, 0))


def prefix_mask(prefix_length: int) -> int:
    """프리픽스 길이에 대한 네트워크 마스크 (0이면 빈 마스크)"""
    return (MAX_ADDRESS << (32 - prefix_length)) & MAX_ADDRESS


@dataclass(frozen=True)
class CIDRRange:
    """CIDR 표기 범위. 호스트 비트가 0일 필요는 없음"""
    network: str
    prefix_length: int

    def contains(self, address: str) -> bool:
        mask = prefix_mask(self.prefix_length)
        return address_to_int(self.network) & mask == address_to_int(address) & mask

    @property
    def first(self) -> int:
        return address_to_int(self.network) & prefix_mask(self.prefix_length)

    @property
    def size(self) -> int:
        return 1 << (32 - self.prefix_length)

    def __str__(self) -> str:
        return f"{self.network}/{self.prefix_length}"


@dataclass(frozen=True)
class BoundedRange:
    """시작-끝 표기 범위. start > end이면 빈 범위로 취급"""
    start: str
    end: str

    def contains(self, address: str) -> bool:
        value = address_to_int(address)
        return address_to_int(self.start) <= value <= address_to_int(self.end)

    @property
    def first(self) -> int:
        return address_to_int(self.start)

    @property
    def size(self) -> int:
        return max(0, address_to_int(self.end) - address_to_int(self.start) + 1)

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


IPRange = Union[CIDRRange, BoundedRange]


def parse_ip_range(text: str) -> IPRange:
    """사용자 입력 문자열을 IPRange로 파싱

    Raises:
        MalformedRange: 두 형식 모두와 일치하지 않거나, 옥텟이 255를 넘거나,
            CIDR 프리픽스가 0-32 범위를 벗어난 경우
    """
    text = (text or "").strip()
    if not text:
        raise MalformedRange(text, "empty input")

    match = _CIDR_RE.match(text)
    if match:
        network, prefix = match.group(1), int(match.group(2))
        if not is_valid_address(network):
            raise MalformedRange(text, "octet out of range")
        if prefix > 32:
            raise MalformedRange(text, "prefix length must be between 0 and 32")
        return CIDRRange(network, prefix)

    match = _BOUNDED_RE.match(text)
    if match:
        start, end = match.group(1), match.group(2)
        if not (is_valid_address(start) and is_valid_address(end)):
            raise MalformedRange(text, "octet out of range")
        return BoundedRange(start, end)

    raise MalformedRange(text, "expected a.b.c.d/n or a.b.c.d-e.f.g.h")


def contains(ip_range: IPRange, address: str) -> bool:
    """주소가 범위에 포함되는지 확인"""
    return ip_range.contains(address)


def sample_addresses(ip_range: IPRange, count: int = 3, skip_first: bool = True) -> List[str]:
    """프롬프트 예시로 보여줄 범위 내 주소 몇 개"""
    offset = 1 if skip_first and ip_range.size > 1 else 0
    available = max(0, ip_range.size - offset)
    return [int_to_address(ip_range.first + offset + i) for i in range(min(count, available))]
