"""Tests for the clump loader."""
import logging
import os
import struct
import sys
import tempfile
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dff_loader import ClumpLoader, ClumpReader, LoadState, load_clump
from dff_stream import ChunkStream
from dff_types import (
    ChunkType,
    ClumpLoadError,
    DanglingReference,
    TruncatedStream,
    UnexpectedChunk,
    UnsupportedVersion,
)
from clump_builder import (
    JUNK,
    atomic,
    chunk,
    clump,
    frame_list,
    geometry,
    geometry_list,
    material,
    simple_clump,
    triangle_geometry,
)

SENTINEL = object()


def sentinel_lookup(name, mask_name):
    return SENTINEL if (name, mask_name) == ("wall01", "") else None


def test_round_trip_shape():
    """N frames, M geometries, K atomics should load in file order."""
    result = ClumpLoader().load(simple_clump(num_frames=4, num_geometries=3, num_atomics=5))

    assert len(result.frames) == 4
    assert len(result.geometries) == 3
    assert len(result.atomics) == 5
    assert [f.name for f in result.frames] == ["frame0", "frame1", "frame2", "frame3"]
    assert [(a.frame, a.geometry) for a in result.atomics] == [
        (0, 0), (1, 1), (2, 2), (3, 0), (0, 1)
    ]


def test_atomic_indices_in_range():
    """Every atomic of a loaded clump should point at existing entries."""
    result = load_clump(simple_clump(num_frames=3, num_geometries=2, num_atomics=6))

    for a in result.atomics:
        assert 0 <= a.frame < len(result.frames)
        assert 0 <= a.geometry < len(result.geometries)
        assert result.get_atomic_geometry(a) is result.geometries[a.geometry]
        assert result.get_atomic_frame(a) is result.frames[a.frame]


def test_clump_header_counts():
    """Should read light and camera counts from newer clump structs."""
    result = load_clump(simple_clump())
    assert result.light_count == 0
    assert result.camera_count == 0
    assert result.atomics[0].flags == 5


def test_old_clump_without_light_counts():
    """3.3 and older clump structs only hold the atomic count."""
    result = load_clump(simple_clump(num_frames=2, num_geometries=2, num_atomics=2,
                                     version=0x31000))
    assert len(result.atomics) == 2


def build_parts():
    frames = frame_list([{"name": "root"}, {"parent": 0, "name": "child"}])
    geometries = geometry_list([triangle_geometry(), geometry()])
    atomics = [atomic(0, 0), atomic(1, 1)]
    return frames, geometries, atomics


def test_skip_unknown_chunks():
    """Unknown chunks between recognized ones should not change the result."""
    frames, geometries, atomics = build_parts()
    junk = chunk(0x7777, b"\xde\xad\xbe\xef" * 7)

    plain = load_clump(clump(frames, geometries, atomics))
    noisy = load_clump(
        junk + clump(junk + frames + junk + geometries, b"",
                     [atomics[0], junk, atomics[1]], extra=junk, atomic_count=2)
    )

    assert noisy == plain


def test_skip_unknown_chunks_inside_children():
    """Unknown chunks nested in every child reader should not change the result."""
    def build(junk):
        frames = frame_list([{"name": "root"}, {"parent": 0, "name": "child"}], junk=junk)
        geometries = geometry_list([
            triangle_geometry(materials=[material(texture_name="wall01", junk=junk)],
                              junk=junk),
            geometry(junk=junk),
        ], junk=junk)
        atomics = [atomic(0, 0, junk=junk), atomic(1, 1, junk=junk)]
        return clump(frames, geometries, atomics)

    plain = load_clump(build(b""), sentinel_lookup)
    noisy = load_clump(build(JUNK), sentinel_lookup)

    assert noisy == plain
    assert noisy.geometries[0].materials[0].texture.handle is SENTINEL
    assert [(a.frame, a.geometry) for a in noisy.atomics] == [(0, 0), (1, 1)]


def test_optional_chunks_after_atomics():
    """Light records and the clump extension should be skipped."""
    frames, geometries, atomics = build_parts()
    extra = (
        chunk(ChunkType.STRUCT, struct.pack("<i", 0))
        + chunk(ChunkType.LIGHT, b"\x00" * 24)
        + chunk(ChunkType.EXTENSION, chunk(0x0253F2FA, b"\x00" * 16))
    )

    result = load_clump(clump(frames, geometries, atomics, extra=extra))

    assert len(result.atomics) == 2


@pytest.mark.parametrize("cut", [1, 11, 12, 13, 40, 100, -1])
def test_truncated_buffer(cut):
    """Cutting the buffer inside a chunk should raise TruncatedStream."""
    data = simple_clump(num_frames=2, num_geometries=2, num_atomics=2)
    with pytest.raises(TruncatedStream):
        load_clump(data[:cut])


def test_truncated_at_every_offset():
    """No truncation point should crash or load silently."""
    data = simple_clump(num_frames=2, num_geometries=1, num_atomics=2)
    for cut in range(1, len(data)):
        with pytest.raises(TruncatedStream):
            load_clump(data[:cut])


def test_empty_buffer():
    """A buffer without a clump is not a model."""
    with pytest.raises(UnexpectedChunk, match="No clump"):
        load_clump(b"")


def test_dangling_atomic_frame():
    """An atomic pointing one past the last frame should fail."""
    frames, geometries, _ = build_parts()
    data = clump(frames, geometries, [atomic(0, 0), atomic(2, 0)])

    with pytest.raises(DanglingReference) as exc:
        load_clump(data)
    assert isinstance(exc.value, ClumpLoadError)
    assert exc.value.offset > 0


def test_dangling_atomic_geometry():
    """An atomic pointing past the last geometry should fail."""
    frames, geometries, _ = build_parts()
    with pytest.raises(DanglingReference):
        load_clump(clump(frames, geometries, [atomic(0, 2)]))


def test_skip_dangling_atomics(caplog):
    """With the skip policy the bad atomic is dropped and logged."""
    frames, geometries, _ = build_parts()
    data = clump(frames, geometries, [atomic(0, 0), atomic(2, 0), atomic(1, 1)])

    with caplog.at_level(logging.WARNING):
        result = ClumpLoader(skip_dangling_atomics=True).load(data)

    assert [(a.frame, a.geometry) for a in result.atomics] == [(0, 0), (1, 1)]
    assert "Dropping atomic" in caplog.text


def test_geometry_list_before_frame_list():
    """Required chunks out of order should fail."""
    frames, geometries, atomics = build_parts()
    with pytest.raises(UnexpectedChunk, match="EXPECT_FRAME_LIST"):
        load_clump(clump(geometries, frames, atomics))


def test_atomic_before_geometry_list():
    frames, geometries, atomics = build_parts()
    with pytest.raises(UnexpectedChunk):
        load_clump(clump(frames, atomics[0] + geometries, atomics[1:]))


def test_atomic_after_extension():
    """Atomics may not follow the clump's optional trailer."""
    frames, geometries, atomics = build_parts()
    extra = chunk(ChunkType.EXTENSION, b"") + atomic(0, 0)
    with pytest.raises(UnexpectedChunk):
        load_clump(clump(frames, geometries, atomics, extra=extra))


def test_clump_without_geometry_list():
    """A clump ending before its geometry list should fail."""
    frames, _, _ = build_parts()
    with pytest.raises(UnexpectedChunk, match="EXPECT_GEOMETRY_LIST"):
        load_clump(clump(frames, b""))


def test_clump_without_struct():
    """The clump struct must come first."""
    frames, geometries, atomics = build_parts()
    payload = frames + geometries + b"".join(atomics)
    with pytest.raises(UnexpectedChunk, match="clump STRUCT"):
        load_clump(chunk(ChunkType.CLUMP, payload))


def test_root_chunk_not_clump():
    """A recognized non-clump root chunk should fail."""
    with pytest.raises(UnexpectedChunk, match="Expected CLUMP"):
        load_clump(geometry_list([]))


def test_uv_anim_dictionary_before_clump():
    """UV animation dictionaries before the clump are skipped."""
    data = chunk(ChunkType.UV_ANIM_DICT, b"\x00" * 32) + simple_clump()
    assert len(load_clump(data).atomics) == 1


def test_unsupported_clump_version():
    """Clump structs from a future major version should fail."""
    with pytest.raises(UnsupportedVersion):
        load_clump(simple_clump(version=0x40000))


def test_texture_passthrough():
    """Textures resolve through the loader's lookup; misses still load."""
    frames = frame_list([{}])
    geometries = geometry_list([
        triangle_geometry(materials=[material(texture_name="wall01")]),
        triangle_geometry(materials=[material(texture_name="missing")]),
    ])
    data = clump(frames, geometries, [atomic(0, 0), atomic(0, 1)])

    result = ClumpLoader(texture_lookup=sentinel_lookup).load(data)

    assert result.geometries[0].materials[0].texture.handle is SENTINEL
    assert result.geometries[1].materials[0].texture.handle is None


def test_set_texture_lookup():
    """A lookup set after construction is used by later loads."""
    frames = frame_list([{}])
    geometries = geometry_list([triangle_geometry(materials=[material(texture_name="wall01")])])
    data = clump(frames, geometries, [atomic(0, 0)])

    loader = ClumpLoader()
    assert loader.load(data).geometries[0].materials[0].texture.handle is None

    loader.set_texture_lookup(sentinel_lookup)
    assert loader.load(data).geometries[0].materials[0].texture.handle is SENTINEL


def test_empty_geometry_in_clump():
    """A clump may bind an atomic to an empty geometry."""
    frames, geometries, atomics = build_parts()
    result = load_clump(clump(frames, geometries, atomics))

    assert result.geometries[1].is_empty
    assert result.get_atomic_geometry(result.atomics[1]).is_empty


def test_single_mesh_view():
    """get_single_mesh should return the first atomic's geometry."""
    result = load_clump(simple_clump(num_frames=1, num_geometries=2, num_atomics=1))
    assert result.get_single_mesh() is result.geometries[0]

    frames, geometries, _ = build_parts()
    assert load_clump(clump(frames, geometries)).get_single_mesh() is None


def test_hierarchy_queries():
    """Should expose roots, children, names and depth."""
    result = load_clump(simple_clump(num_frames=3, num_geometries=1, num_atomics=1))

    assert result.root_frames == [0]
    assert result.get_children(0) == [1]
    assert result.get_children(2) == []
    assert result.find_frame("FRAME2") == 2
    assert result.find_frame("nope") is None
    assert result.get_hierarchy_depth(2) == 2


def test_world_matrix():
    """World transforms should compose through the parent chain."""
    rotation = ((0.0, 1.0, 0.0), (-1.0, 0.0, 0.0), (0.0, 0.0, 1.0))
    frames = frame_list([
        {"rotation": rotation, "translation": (0.0, 0.0, 5.0)},
        {"translation": (1.0, 0.0, 0.0), "parent": 0},
    ])
    result = load_clump(clump(frames, geometry_list([])))

    world = result.get_world_matrix(1)

    assert world[3][:3] == pytest.approx([0.0, 1.0, 5.0])
    assert world[0][:3] == pytest.approx([0.0, 1.0, 0.0])


def test_load_file():
    """load_file should read the whole file and load it."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "model.dff")
        with open(path, "wb") as f:
            f.write(simple_clump(num_frames=2, num_geometries=1, num_atomics=2))

        result = ClumpLoader().load_file(path)

    assert len(result.atomics) == 2


def test_loader_is_reusable_after_failure():
    """A failed load should not affect the next one."""
    loader = ClumpLoader()
    with pytest.raises(TruncatedStream):
        loader.load(simple_clump()[:-3])

    assert len(loader.load(simple_clump()).frames) == 1


def read_with_reader(data):
    header, payload = ChunkStream(data).read_chunk()
    reader = ClumpReader()
    return reader, reader.read(payload, header)


def test_reader_finishes_in_done():
    """A successful read should leave the reader in DONE."""
    reader, result = read_with_reader(simple_clump(num_frames=2, num_geometries=1, num_atomics=2))

    assert reader.state == LoadState.DONE
    assert len(result.atomics) == 2


def test_reader_done_after_trailer():
    """Optional trailer chunks pass through EXPECT_EXTENSION to DONE."""
    frames, geometries, atomics = build_parts()
    reader, _ = read_with_reader(
        clump(frames, geometries, atomics, extra=chunk(ChunkType.EXTENSION, b""))
    )

    assert reader.state == LoadState.DONE


def test_reader_keeps_failing_state():
    """A failed read should leave the reader where the bad chunk was met."""
    frames, geometries, atomics = build_parts()
    header, payload = ChunkStream(clump(geometries, frames, atomics)).read_chunk()
    reader = ClumpReader()

    with pytest.raises(UnexpectedChunk):
        reader.read(payload, header)
    assert reader.state == LoadState.EXPECT_FRAME_LIST
