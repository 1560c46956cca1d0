#!/usr/bin/env python3
"""
QR Code command line
Usage:
    qrcodec encode [DATA] [--file PATH|-] [-v V] [-m] [-l L] [--kanji] [--invert]
    qrcodec decode IMAGE [-e LABEL] [--lossy] [--debug]
"""

import argparse
import codecs
import logging
import os
import sys

import qr_decode
from qr_encode import encode
from qr_render import RenderConfig, render
from qr_types import EcLevel, ErrorKind, QRError

logger = logging.getLogger(__name__)

EXIT_USAGE, EXIT_IMAGE, EXIT_CODEC, EXIT_IO = 1, 2, 3, 4


class _Parser(argparse.ArgumentParser):
    def error(self, message):
        raise QRError(ErrorKind.USAGE, message)


def lookup_charset(label):
    """Canonical codec name for a charset label, or a USAGE error."""
    try:
        return codecs.lookup(label).name
    except LookupError:
        raise QRError(ErrorKind.USAGE, f"unsupported encoding: {label}", encoding=label) from None


def exit_code(error):
    if isinstance(error, QRError):
        if error.is_usage:
            return EXIT_USAGE
        if error.kind is ErrorKind.IMAGE:
            return EXIT_IMAGE
        return EXIT_CODEC
    return EXIT_IO


def build_parser():
    parser = _Parser(prog="qrcodec", description="Encode and decode QR / Micro QR codes")
    sub = parser.add_subparsers(dest="command", required=True)

    dec = sub.add_parser("decode", help="Decode QR codes from an image file")
    dec.add_argument("image", help="Path to the image to decode")
    dec.add_argument("-e", "--encoding", default="UTF-8", help="Character encoding of the content")
    dec.add_argument("--lossy", action="store_true", help="Replace undecodable bytes instead of failing")
    dec.add_argument("--debug", action="store_true", help="Verbose log and debug images in <image>_debug/")
    dec.add_argument("--workers", type=int, default=None, help="Decode symbols in parallel")

    enc = sub.add_parser("encode", help="Encode data into a QR code")
    enc.add_argument("data", nargs="?", help="Data to be encoded")
    enc.add_argument("--file", help="Read data from a file ('-' for stdin)")
    enc.add_argument("-v", "--version", type=int, help="Version (1-40, or 1-4 with --micro)")
    enc.add_argument("-m", "--micro", action="store_true", help="Generate a Micro QR code")
    enc.add_argument("-l", "--level", default="L", help="Error correction level (L/M/Q/H)")
    enc.add_argument("--kanji", action="store_true", help="Allow kanji mode for Shift-JIS data")
    enc.add_argument("--invert", action="store_true",
                     help="Swap colors for dark terminals (inverted output was the old default)")
    return parser


def _read_data(args):
    if (args.data is None) == (args.file is None):
        raise QRError(ErrorKind.USAGE, "give either DATA or --file")
    if args.file is None:
        return args.data.encode("utf-8")
    if args.file == "-":
        return sys.stdin.buffer.read()
    with open(args.file, "rb") as f:
        return f.read()


def cmd_encode(args):
    level = EcLevel.parse(args.level)
    data = _read_data(args)
    code = encode(data, version=args.version, level=level, micro=args.micro, kanji=args.kanji)
    config = RenderConfig()
    if args.invert:
        config = config.inverted()
    for row in render(code, config):
        print(row)
    return 0


def cmd_decode(args):
    encoding = lookup_charset(args.encoding)
    if args.debug:
        base = os.path.splitext(os.path.basename(args.image))[0]
        qr_decode.DEBUG_DIR = os.path.join(os.path.dirname(args.image) or '.', f"{base}_debug")
        logger.debug("debug output -> %s/", qr_decode.DEBUG_DIR)

    results = qr_decode.decode_file(args.image, workers=args.workers)
    if not results:
        raise QRError(ErrorKind.GEOMETRY, "no QR code found")

    status = 0
    for res in results:
        try:
            text = res.text(encoding, lossy=args.lossy)
        except QRError as e:
            print(f"error: {e}", file=sys.stderr)
            status = exit_code(e)
            continue
        print(f"# Version: {res.grid.version}")
        print(f"# ECC Level: {res.grid.ec_level.name}")
        print(f"# Mask: {res.grid.mask}")
        print(text)
    return status


def main(argv=None):
    try:
        args = build_parser().parse_args(argv)
        logging.basicConfig(level=logging.DEBUG if getattr(args, "debug", False) else logging.WARNING,
                            format="%(levelname)s: %(message)s")
        if args.command == "encode":
            return cmd_encode(args)
        return cmd_decode(args)
    except (QRError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return exit_code(e)


if __name__ == "__main__":
    sys.exit(main())
