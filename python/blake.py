#! /usr/bin/env python3

import argparse
import sys

# sigma, indexed by round mod 10
MSG_SCHEDULE = (
    (0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12, 13, 14, 15),
    (14, 10, 4, 8, 9, 15, 13, 6, 1, 12, 0, 2, 11, 7, 5, 3),
    (11, 8, 12, 0, 5, 2, 15, 13, 10, 14, 3, 6, 7, 1, 9, 4),
    (7, 9, 3, 1, 13, 12, 11, 14, 2, 6, 5, 10, 4, 0, 15, 8),
    (9, 0, 5, 7, 2, 4, 10, 15, 14, 1, 11, 12, 6, 8, 3, 13),
    (2, 12, 6, 10, 0, 11, 8, 3, 4, 13, 7, 5, 15, 14, 1, 9),
    (12, 5, 1, 15, 14, 13, 4, 10, 0, 7, 6, 3, 9, 2, 8, 11),
    (13, 11, 7, 14, 12, 1, 3, 9, 5, 0, 15, 4, 8, 6, 2, 10),
    (6, 15, 14, 9, 11, 3, 0, 8, 12, 2, 13, 7, 1, 4, 10, 5),
    (10, 2, 8, 4, 7, 6, 1, 5, 15, 11, 9, 14, 3, 12, 13, 0),
)

# The leading fractional digits of pi.
CONSTANTS_32 = (
    0x243F6A88, 0x85A308D3, 0x13198A2E, 0x03707344,
    0xA4093822, 0x299F31D0, 0x082EFA98, 0xEC4E6C89,
    0x452821E6, 0x38D01377, 0xBE5466CF, 0x34E90C6C,
    0xC0AC29B7, 0xC97C50DD, 0x3F84D5B5, 0xB5470917,
)

CONSTANTS_64 = (
    0x243F6A8885A308D3, 0x13198A2E03707344,
    0xA4093822299F31D0, 0x082EFA98EC4E6C89,
    0x452821E638D01377, 0xBE5466CF34E90C6C,
    0xC0AC29B7C97C50DD, 0x3F84D5B5B5470917,
    0x9216D5D98979FB1B, 0xD1310BA698DFB5AC,
    0x2FFD72DBD01ADFB7, 0xB8E1AFED6A267E96,
    0xBA7C9045F12C7F99, 0x24A19947B3916CF7,
    0x0801F2E2858EFC16, 0x636920D871574E69,
)

IV_224 = (
    0xC1059ED8, 0x367CD507, 0x3070DD17, 0xF70E5939,
    0xFFC00B31, 0x68581511, 0x64F98FA7, 0xBEFA4FA4,
)

IV_256 = (
    0x6A09E667, 0xBB67AE85, 0x3C6EF372, 0xA54FF53A,
    0x510E527F, 0x9B05688C, 0x1F83D9AB, 0x5BE0CD19,
)

IV_384 = (
    0xCBBB9D5DC1059ED8, 0x629A292A367CD507,
    0x9159015A3070DD17, 0x152FECD8F70E5939,
    0x67332667FFC00B31, 0x8EB44A8768581511,
    0xDB0C2E0D64F98FA7, 0x47B5481DBEFA4FA4,
)

IV_512 = (
    0x6A09E667F3BCC908, 0xBB67AE8584CAA73B,
    0x3C6EF372FE94F82B, 0xA54FF53A5F1D36F1,
    0x510E527FADE682D1, 0x9B05688C2B3E6C1F,
    0x1F83D9ABFB41BD6B, 0x5BE0CD19137E2179,
)

DIGEST_SIZE_224 = 28
DIGEST_SIZE_256 = 32
DIGEST_SIZE_384 = 48
DIGEST_SIZE_512 = 64
BLOCK_SIZE_256 = 64
BLOCK_SIZE_512 = 128

COUNTER_BITS = 64
COUNTER_MAX = 2**COUNTER_BITS - 1

# padding bytes
PAD_START = 0x80
DOMAIN_FULL = 0x01
DOMAIN_TRUNCATED = 0x00


class SaltSizeError(ValueError):
    pass


# Everything that differs between the 32-bit family (BLAKE-224/256) and the
# 64-bit family (BLAKE-384/512). The padding layout follows from the word
# size: the bit length footer is two words, preceded by one domain byte.
class Width:
    def __init__(self, word_bits, rounds, rotations, constants):
        self.word_bits = word_bits
        self.word_bytes = word_bits // 8
        self.word_max = 2**word_bits - 1
        self.block_size = 16 * self.word_bytes
        self.block_bits = 8 * self.block_size
        self.rounds = rounds
        self.rotations = rotations
        self.constants = constants
        self.salt_size = 4 * self.word_bytes
        self.length_size = 2 * self.word_bytes
        self.pad_target = self.block_size - self.length_size - 1


NARROW = Width(32, 14, (16, 12, 8, 7), CONSTANTS_32)
WIDE = Width(64, 16, (32, 25, 16, 11), CONSTANTS_64)

# name -> (width, truncated, iv, digest size)
VARIANTS = {
    "blake224": (NARROW, True, IV_224, DIGEST_SIZE_224),
    "blake256": (NARROW, False, IV_256, DIGEST_SIZE_256),
    "blake384": (WIDE, True, IV_384, DIGEST_SIZE_384),
    "blake512": (WIDE, False, IV_512, DIGEST_SIZE_512),
}


def rotate_right(x, n, width):
    return (x >> n | x << (width.word_bits - n)) & width.word_max


def g(state, width, msg_words, schedule, a, b, c, d, i):
    x = schedule[2 * i]
    y = schedule[2 * i + 1]
    k = width.constants
    mask = width.word_max
    r1, r2, r3, r4 = width.rotations
    state[a] = (state[a] + state[b] + (msg_words[x] ^ k[y])) & mask
    state[d] = rotate_right(state[d] ^ state[a], r1, width)
    state[c] = (state[c] + state[d]) & mask
    state[b] = rotate_right(state[b] ^ state[c], r2, width)
    state[a] = (state[a] + state[b] + (msg_words[y] ^ k[x])) & mask
    state[d] = rotate_right(state[d] ^ state[a], r3, width)
    state[c] = (state[c] + state[d]) & mask
    state[b] = rotate_right(state[b] ^ state[c], r4, width)


def round(state, width, msg_words, schedule):
    # Mix the columns.
    g(state, width, msg_words, schedule, 0, 4, 8, 12, 0)
    g(state, width, msg_words, schedule, 1, 5, 9, 13, 1)
    g(state, width, msg_words, schedule, 2, 6, 10, 14, 2)
    g(state, width, msg_words, schedule, 3, 7, 11, 15, 3)
    # Mix the diagonals.
    g(state, width, msg_words, schedule, 0, 5, 10, 15, 4)
    g(state, width, msg_words, schedule, 1, 6, 11, 12, 5)
    g(state, width, msg_words, schedule, 2, 7, 8, 13, 6)
    g(state, width, msg_words, schedule, 3, 4, 9, 14, 7)


def words_from_bytes(buf, width):
    size = width.word_bytes
    words = [0] * (len(buf) // size)
    for word_i in range(len(words)):
        words[word_i] = int.from_bytes(
            buf[word_i * size:(word_i + 1) * size], "big")
    return words


def bytes_from_words(words, width):
    size = width.word_bytes
    buf = bytearray(len(words) * size)
    for word_i in range(len(words)):
        buf[size * word_i:size * (word_i + 1)] = \
            words[word_i].to_bytes(size, "big")
    return buf


# Compress a single block. The counter passed in covers everything before
# this block; the returned one includes it. Returns (new cv, new counter).
def compress(width, cv, salt, counter, skip_counter, block):
    k = width.constants
    state = [
        cv[0],
        cv[1],
        cv[2],
        cv[3],
        cv[4],
        cv[5],
        cv[6],
        cv[7],
        salt[0] ^ k[0],
        salt[1] ^ k[1],
        salt[2] ^ k[2],
        salt[3] ^ k[3],
        k[4],
        k[5],
        k[6],
        k[7],
    ]
    counter = (counter + width.block_bits) & COUNTER_MAX
    if not skip_counter:
        if width.word_bits == 32:
            state[12] ^= counter & width.word_max
            state[13] ^= counter & width.word_max
            state[14] ^= counter >> 32
            state[15] ^= counter >> 32
        else:
            # The 64-bit family only mixes the counter into two words.
            state[12] ^= counter
            state[13] ^= counter
    block_words = words_from_bytes(block, width)
    for round_number in range(width.rounds):
        round(state, width, block_words, MSG_SCHEDULE[round_number % 10])
    new_cv = [cv[i] ^ salt[i % 4] ^ state[i] ^ state[i + 8] for i in range(8)]
    return new_cv, counter


class Blake:
    def __init__(self, name, data=b"", salt=None):
        try:
            width, truncated, iv, digest_size = VARIANTS[name]
        except KeyError:
            raise ValueError("unsupported hash type " + repr(name)) from None
        self.name = name
        self.width = width
        self.truncated = truncated
        self.iv = iv
        self.digest_size = digest_size
        self.block_size = width.block_size
        self.salt = self._load_salt(salt)
        self.reset()
        self.update(data)

    def _load_salt(self, salt):
        if salt is None:
            return [0, 0, 0, 0]
        salt = memoryview(salt).cast("B")
        if len(salt) != self.width.salt_size:
            raise SaltSizeError("{} salt must be {} bytes, got {}".format(
                self.name, self.width.salt_size, len(salt)))
        return words_from_bytes(salt, self.width)

    # The salt is kept across resets.
    def reset(self):
        self.cv = list(self.iv)
        self.counter = 0
        self.buffer = bytearray()
        self.skip_counter = False

    def _compress(self, block):
        self.cv, self.counter = compress(self.width, self.cv, self.salt,
                                         self.counter, self.skip_counter,
                                         block)

    def update(self, data):
        data = memoryview(data).cast("B")
        block_size = self.width.block_size
        position = 0
        if self.buffer:
            take = min(block_size - len(self.buffer), len(data))
            self.buffer += data[:take]
            position = take
            if len(self.buffer) < block_size:
                return
            self._compress(self.buffer)
            self.buffer = bytearray()
        while len(data) - position >= block_size:
            self._compress(data[position:position + block_size])
            position += block_size
        self.buffer += data[position:]

    # Padding bytes go through update() like message bytes, but must not be
    # counted as message bits, so back the counter out beforehand.
    def _update_padding(self, padding):
        self.counter = (self.counter - 8 * len(padding)) & COUNTER_MAX
        self.update(padding)

    def _finalize(self):
        width = self.width
        target = width.pad_target
        buffered = len(self.buffer)
        total_bits = (self.counter + 8 * buffered) & COUNTER_MAX
        if self.truncated:
            domain = DOMAIN_TRUNCATED
        else:
            domain = DOMAIN_FULL
        if buffered == target:
            # The start bit and the domain bit share a single byte.
            self._update_padding(bytes([PAD_START | domain]))
        else:
            if buffered < target:
                if buffered == 0:
                    self.skip_counter = True
                self._update_padding(
                    bytes([PAD_START]) + bytes(target - buffered - 1))
            else:
                # No room for the footer. Finish this block, then start a
                # final block that holds no message bits.
                self._update_padding(
                    bytes([PAD_START]) + bytes(width.block_size - buffered - 1))
                self.skip_counter = True
                self._update_padding(bytes(target))
            self._update_padding(bytes([domain]))
        self._update_padding(total_bits.to_bytes(width.length_size, "big"))
        # Checked even under -O.
        if self.buffer:
            raise AssertionError("buffer not empty after padding")
        return bytes(bytes_from_words(self.cv, width)[:self.digest_size])

    def copy(self):
        other = self.__class__.__new__(self.__class__)
        other.__dict__.update(self.__dict__)
        other.cv = list(self.cv)
        other.salt = list(self.salt)
        other.buffer = bytearray(self.buffer)
        return other

    def digest(self):
        return self.copy()._finalize()

    def hexdigest(self):
        return self.digest().hex()


# ==================== Public API ====================


def new(name, data=b"", *, salt=None):
    return Blake(name, data, salt)


def blake224(data=b"", *, salt=None):
    return Blake("blake224", data, salt)


def blake256(data=b"", *, salt=None):
    return Blake("blake256", data, salt)


def blake384(data=b"", *, salt=None):
    return Blake("blake384", data, salt)


def blake512(data=b"", *, salt=None):
    return Blake("blake512", data, salt)


def hash224(input_bytes, salt=None):
    return blake224(input_bytes, salt=salt).digest()


def hash256(input_bytes, salt=None):
    return blake256(input_bytes, salt=salt).digest()


def hash384(input_bytes, salt=None):
    return blake384(input_bytes, salt=salt).digest()


def hash512(input_bytes, salt=None):
    return blake512(input_bytes, salt=salt).digest()


# ==================== Command line ====================

READ_SIZE = 65536


def hash_file(hasher, f):
    while True:
        chunk = f.read(READ_SIZE)
        if not chunk:
            return hasher.hexdigest()
        hasher.update(chunk)


def salt_from_hex(arg):
    try:
        return bytes.fromhex(arg)
    except ValueError:
        raise argparse.ArgumentTypeError("salt must be hex: " + repr(arg))


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="blake", description="Print BLAKE checksums.")
    parser.add_argument("--bits", type=int, default=256,
                        choices=[224, 256, 384, 512])
    parser.add_argument("--salt", type=salt_from_hex,
                        help="salt as hex, 16 bytes for 224/256 "
                        "or 32 bytes for 384/512")
    parser.add_argument("files", nargs="*", metavar="FILE")
    args = parser.parse_args(argv)

    name = "blake{}".format(args.bits)
    try:
        hasher = new(name, salt=args.salt)
    except SaltSizeError as e:
        parser.error(str(e))

    if not args.files:
        print(hash_file(hasher, sys.stdin.buffer))
        return
    failed = False
    for path in args.files:
        try:
            with open(path, "rb") as f:
                print(hash_file(hasher.copy(), f), "", path)
        except OSError as e:
            print("blake: {}: {}".format(path, e.strerror), file=sys.stderr)
            failed = True
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
