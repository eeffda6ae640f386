"""Shared fixtures: small indexed BAM files written with pysam."""
import re

import pysam
import pytest

DEFAULT_REFERENCES = (("chr1", 10000), ("chr2", 5000))

FLAG_PAIRED = 0x1
FLAG_PROPER_PAIR = 0x2
FLAG_UNMAPPED = 0x4
FLAG_REVERSE = 0x10
FLAG_MATE_REVERSE = 0x20
FLAG_READ1 = 0x40
FLAG_READ2 = 0x80
FLAG_SECONDARY = 0x100

_CIGAR_OPS = {"M": 0, "I": 1, "D": 2, "N": 3, "S": 4, "=": 7, "X": 8}
_QUERY_CONSUMING = {0, 1, 4, 7, 8}


def _cigar(cigar):
    if isinstance(cigar, int):
        return [(0, cigar)]
    return [(_CIGAR_OPS[op], int(n)) for n, op in re.findall(r"(\d+)([MIDNS=X])", cigar)]


def _query_length(cigartuples):
    return sum(n for op, n in cigartuples if op in _QUERY_CONSUMING)


def _segment(header, ref_ids, name, reference, start, cigar, flag):
    segment = pysam.AlignedSegment(header)
    segment.query_name = name
    segment.reference_id = ref_ids[reference]
    segment.reference_start = start
    segment.flag = flag
    segment.mapping_quality = 60
    if flag & FLAG_UNMAPPED:
        length = cigar if isinstance(cigar, int) else 10
    else:
        segment.cigartuples = _cigar(cigar)
        length = _query_length(segment.cigartuples)
    segment.query_sequence = "A" * length
    segment.query_qualities = pysam.qualitystring_to_array("I" * length)
    return segment


@pytest.fixture
def make_bam(tmp_path):
    """
    Factory writing a coordinate-sorted, indexed BAM file.

    ``reads`` are ``(name, reference, start, cigar_or_length, strand[,
    extra_flags])``. ``pairs`` are ``(name, reference, first_start,
    second_start, read_length, first_strand)``; the second mate is on the
    opposite strand and both are flagged as a proper pair.
    """

    def factory(name, reads=(), pairs=(), references=DEFAULT_REFERENCES, index=True):
        path = tmp_path / f"{name}.bam"
        header = {
            "HD": {"VN": "1.6", "SO": "coordinate"},
            "SQ": [{"SN": n, "LN": length} for n, length in references],
        }
        ref_ids = {n: i for i, (n, _) in enumerate(references)}

        records = []
        for read in reads:
            read_name, reference, start, cigar, strand = read[:5]
            flag = read[5] if len(read) > 5 else 0
            if strand == "-":
                flag |= FLAG_REVERSE
            records.append((read_name, reference, start, cigar, flag, None))

        for pair_name, reference, first_start, second_start, read_length, first_strand in pairs:
            first_reverse = first_strand == "-"
            left, right = sorted([first_start, second_start])
            template_length = right + read_length - left
            base = FLAG_PAIRED | FLAG_PROPER_PAIR
            first_flag = base | FLAG_READ1 | (FLAG_REVERSE if first_reverse else FLAG_MATE_REVERSE)
            second_flag = base | FLAG_READ2 | (FLAG_MATE_REVERSE if first_reverse else FLAG_REVERSE)
            first_tlen = template_length if first_start <= second_start else -template_length
            records.append((pair_name, reference, first_start, read_length, first_flag,
                            (ref_ids[reference], second_start, first_tlen)))
            records.append((pair_name, reference, second_start, read_length, second_flag,
                            (ref_ids[reference], first_start, -first_tlen)))

        records.sort(key=lambda r: (ref_ids[r[1]], r[2]))
        with pysam.AlignmentFile(str(path), "wb", header=header) as out:
            for read_name, reference, start, cigar, flag, mate in records:
                segment = _segment(out.header, ref_ids, read_name, reference, start, cigar, flag)
                if mate is not None:
                    segment.next_reference_id, segment.next_reference_start, segment.template_length = mate
                out.write(segment)

        if index:
            pysam.index(str(path))
        return path

    return factory


@pytest.fixture
def simple_bam(make_bam):
    """Single-end reads on chr1 on both strands, plus one unmapped read."""
    reads = [
        ("r1", "chr1", 100, 50, "+"),
        ("r2", "chr1", 120, 50, "+"),
        ("r3", "chr1", 300, 50, "-"),
        ("r4", "chr1", 1000, 100, "+"),
        ("r5", "chr2", 200, 50, "-"),
        ("u1", "chr1", 500, 10, "+", FLAG_UNMAPPED),
    ]
    return make_bam("simple", reads)
