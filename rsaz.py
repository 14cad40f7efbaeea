import argparse
import os
import sys
import logging

from rsaz_crypto import (
    generate_rsa_keys,
    encrypt_file as module_encrypt_file,
    decrypt_file as module_decrypt_file,
    RsazError,
    ALLOWED_KEY_SIZES,
    DEFAULT_KEY_SIZE,
)

# Set up logging configuration
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

_TRUE_VALUES = ('true', 'yes', '1', 'on')
_FALSE_VALUES = ('false', 'no', '0', 'off')


def _str2bool(value):
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise argparse.ArgumentTypeError(f"expected a boolean value, got '{value}'")


def _report_error(error):
    print(f"Error: {error}", file=sys.stderr)
    cause = error.__cause__
    while cause is not None:
        print(f"Caused by: {str(cause) or type(cause).__name__}", file=sys.stderr)
        cause = cause.__cause__


def build_parser():
    parser = argparse.ArgumentParser(prog='rsaz', description="RSA file encryption tool (PKCS#1 v1.5, large files split into a zip of parts)")
    parser.add_argument('-v', '--verbose', action='store_true', help='Log every encrypted/decrypted part')
    subparsers = parser.add_subparsers(dest='command', metavar='{gen,enc,dec}')

    gen = subparsers.add_parser('gen', help='Generates private & public PEM files')
    gen.add_argument('-o', '--output-directory', default=os.getcwd(), help='Output directory to save keys, Default: current directory')
    gen.add_argument('-n', '--name', required=True, help='Name of the generated keys that transforms to <NAME>.PRIV.pem and <NAME>.PUB.pem')
    gen.add_argument('-k', '--key-size-in-bytes', type=int, choices=ALLOWED_KEY_SIZES, default=DEFAULT_KEY_SIZE, help=f'Private key modulus size in bytes, Default: {DEFAULT_KEY_SIZE}')

    enc = subparsers.add_parser('enc', help='Encryption')
    enc.add_argument('-p', '--public-pem-file', required=True, help='Public key PEM file')
    enc.add_argument('-i', '--input-filename', required=True, help='Input file to encrypt')
    enc.add_argument('-o', '--output-filename', required=True, help='Output file to save encrypted contents')
    enc.add_argument('-z', '--zip', type=_str2bool, default=True, metavar='BOOL', help='If input is too large, encrypts input part by part and stores them inside a .zip file, Default: true')

    dec = subparsers.add_parser('dec', help='Decryption')
    dec.add_argument('-p', '--private-pem-file', required=True, help='Private key PEM file')
    dec.add_argument('-i', '--input-filename', required=True, help='Input file to decrypt (.zip inputs are read as encrypted parts)')
    dec.add_argument('-o', '--output-filename', required=True, help='Output file to save decrypted contents')

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        if args.command == 'gen':
            priv, pub = generate_rsa_keys(args.output_directory, args.name, args.key_size_in_bytes)
            print(f"RSA keys saved to '{priv}' and '{pub}'")
        elif args.command == 'enc':
            out = module_encrypt_file(args.public_pem_file, args.input_filename, args.output_filename, zip_parts=args.zip)
            print(f"File '{args.input_filename}' successfully encrypted to '{out}'")
        elif args.command == 'dec':
            out = module_decrypt_file(args.private_pem_file, args.input_filename, args.output_filename)
            print(f"File '{args.input_filename}' successfully decrypted to '{out}'")
        else:
            parser.print_help()
            return 2
    except RsazError as e:
        _report_error(e)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
