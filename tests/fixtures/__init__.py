"""
Test fixtures for Disc Workbench.

Provides synthetic disc images for every supported container and
filesystem, built in memory so tests need no real discs.
"""

from tests.fixtures.disc_images import (
    SECTOR,
    IsoBuilder,
    HfsFile,
    HfsFolder,
    BitWriter,
    build_btree,
    btree_node,
    build_hfsplus_volume,
    build_hfs_volume,
    build_apm_image,
    build_hfs_wrapper,
    create_game_iso,
    create_game_iso_bytes,
    create_udf_image,
    hfsplus_sample_tree,
    hfs_sample_tree,
    raw_frames,
    write_bincue,
    write_compressed_chd,
    write_cd_chd,
    write_two_symbol_tree,
    udf_tag,
    big_file_data,
    fragmented_data,
    scattered_data,
    many_file_data,
    pattern,
    msf,
    AUDIO_PREGAP,
    BIG_FILE_SIZE,
    CAFE_TEXT,
    CHD_AUDIO_FRAMES,
    CHD_AUDIO_PREGAP,
    DEEP_TXT,
    FINDER_DATA,
    NOTES_TEXT,
    README_RESOURCE,
    README_TEXT,
    README_TXT,
    SYSTEM_CNF,
    TRACK_DAT,
    UDF_BIG,
    UDF_EMBEDDED,
    UDF_HELLO,
    UDF_UNICODE,
    UDF_UNICODE_DATA,
)

__all__ = [
    # Builders
    "SECTOR",
    "IsoBuilder",
    "HfsFile",
    "HfsFolder",
    "BitWriter",
    "build_btree",
    "btree_node",
    "build_hfsplus_volume",
    "build_hfs_volume",
    "build_apm_image",
    "build_hfs_wrapper",
    "create_game_iso",
    "create_game_iso_bytes",
    "create_udf_image",
    "hfsplus_sample_tree",
    "hfs_sample_tree",
    "raw_frames",
    "write_bincue",
    "write_compressed_chd",
    "write_cd_chd",
    "write_two_symbol_tree",
    "udf_tag",

    # Payloads
    "big_file_data",
    "fragmented_data",
    "scattered_data",
    "many_file_data",
    "pattern",
    "msf",
    "AUDIO_PREGAP",
    "BIG_FILE_SIZE",
    "CAFE_TEXT",
    "CHD_AUDIO_FRAMES",
    "CHD_AUDIO_PREGAP",
    "DEEP_TXT",
    "FINDER_DATA",
    "NOTES_TEXT",
    "README_RESOURCE",
    "README_TEXT",
    "README_TXT",
    "SYSTEM_CNF",
    "TRACK_DAT",
    "UDF_BIG",
    "UDF_EMBEDDED",
    "UDF_HELLO",
    "UDF_UNICODE",
    "UDF_UNICODE_DATA",
]
