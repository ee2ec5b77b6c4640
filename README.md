# exynostools

Tools for building and taking apart the boot images used by Samsung Exynos
devices, together with the device-side logic of their vibrator and USB Type-C
services, in pure Python with no third-party dependencies.

The package contains:

- **Boot images** (`exynostools.bootimg`): the classic Android boot image
  layout (`ANDROID!` magic, page-aligned kernel, ramdisk, optional second
  stage, device tree and a 256-byte signature), with a SHA-1 based image id.
- **DTBH images** (`exynostools.dtbh`): Samsung's DTBH container that bundles
  several compiled device tree blobs behind a table of chip / platform /
  subtype / hardware-revision entries. A small flattened device tree reader
  (`exynostools.fdt`, with `check_header` and `root_properties`) pulls the
  `model_info-*` properties out of each blob.
- **Vibrator** (`exynostools.vibrator`): a timed-output vibrator driven
  through the `enable`, `intensity` and `cp_trigger_index` sysfs nodes.
- **USB Type-C** (`exynostools.usb_roles`, `exynostools.usb`): reading port
  roles and contaminant state from `/sys/class/typec`, switching roles, and
  reacting to kernel uevents.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Command-line tools

### mkbootimg

Builds a boot image.

```
mkbootimg --kernel Image --ramdisk ramdisk.cpio.gz \
          --dt dt.img --cmdline "console=ttySAC2" \
          --base 10000000 --pagesize 2048 \
          -o boot.img
```

| option | meaning | default |
| --- | --- | --- |
| `--kernel <file>` | kernel image (required) | |
| `--ramdisk <file>` | ramdisk image, or `NONE` for none (required) | |
| `--second <file>` | second-stage bootloader | |
| `--cmdline <text>` | kernel command line, at most 511 bytes | empty |
| `--board <name>` | board name, at most 15 bytes | empty |
| `--base <hex>` | base address | `10000000` |
| `--kernel_offset <hex>` | kernel offset from base | `00008000` |
| `--ramdisk_offset <hex>` | ramdisk offset from base | `01000000` |
| `--second_offset <hex>` | second-stage offset from base | `00f00000` |
| `--tags_offset <hex>` | tags offset from base | `00000100` |
| `--pagesize <n>` | 2048, 4096, 8192, 16384, 32768, 65536 or 131072 | 2048 |
| `--dt_dir <dir>` | build a DTBH block from the `.dtb` files in a directory | |
| `--dt <file>` | use a ready-made device tree image | |
| `--signature <file>` | append the first 256 bytes of this file (it must hold at least 256) | |
| `-o`, `--output <file>` | output image (required) | |

Every option takes a value. `--dt_dir` and `--dt` cannot be used together.
An unsupported page size makes the command exit with status -1; other errors
exit with status 1 after a message on standard error.

### unpackbootimg

Splits a boot image into its parts and prints the values needed to rebuild it.

```
unpackbootimg -i boot.img -o out/
```

The magic is searched for at offsets 0 through 512 of the file. For an input
named `boot.img` the output directory (default `./`) receives
`boot.img-cmdline`, `boot.img-base`, `boot.img-ramdisk_offset`,
`boot.img-second_offset`, `boot.img-tags_offset`, `boot.img-pagesize`,
`boot.img-zImage`, `boot.img-ramdisk.gz` (or `boot.img-ramdisk.lz4` when the
ramdisk starts with the bytes `02 21`), `boot.img-second`, `boot.img-dt` and
`boot.img-signature`. `-p <hex>` overrides the page size stored in the header.
The same work is available as `unpack_boot_image(filename, directory, pagesize)`
in `exynostools.unpackbootimg`, which returns the magic offset and the header.

### mkdtbimg

Builds a DTBH image from a directory of compiled device tree blobs.

```
mkdtbimg --dt_dir arch/arm64/boot/dts/exynos -s 2048 -o dt.img
```

The directory may also be given as a bare argument. The page size defaults to
2048, and `-s 0` also selects 2048; `-p` is accepted and ignored. Blobs that
are not valid device trees, or whose root node does not carry the expected
`model_info-platform` and `model_info-subtype`, are skipped with a logged
warning.

### unpackdtbhimg

Lists the entries of a DTBH image and writes each blob out.

```
unpackdtbhimg -i dt.img -o dtbs/ -p 2048
```

The first page (default 2048 bytes) is read as the header. Each blob is
written as `chip<chip>-0x<platform>-0x<subtype>_rev<hw_rev>-<hw_rev_end>.dtb`.

## Library use

```python
from exynostools.bootimg import build_boot_image, find_magic, BootImgHeader

image = build_boot_image(
    kernel=kernel_bytes,
    ramdisk=ramdisk_bytes,
    second=None,
    dt=dt_bytes,
    signature=None,
    cmdline="console=ttySAC2",
    board="",
    pagesize=2048,
    base=0x10000000,
    kernel_offset=0x00008000,
    ramdisk_offset=0x01000000,
    second_offset=0x00F00000,
    tags_offset=0x00000100,
)

offset = find_magic(image)
header = BootImgHeader.unpack(image[offset:])
```

`padding_size(pagesize, itemsize)` and `compute_id(kernel, ramdisk, second, dt)`
expose the page padding and image id calculations.

DTBH images are built with `load_dtbh_block(dtb_path, pagesize, config)`,
which returns the image bytes; `config` is a `DtbhConfig` holding the target's
magic, version, platform and subtype names and codes, and optionally a model
substring to require. Existing images are read with `DtbhHeader.unpack`, whose
entries are `DtEntry` objects, and split with
`extract_dtbs(image, output_dir, page_size)`.

Errors are raised as exceptions: `BootImageError`, `DtbhError` and `FdtError`
for the image formats, and `VibratorError` (with `UnsupportedOperation` and
`IllegalArgument`) for the vibrator.

### Vibrator

`Vibrator(paths, properties)` takes its node locations from a `VibratorPaths`
and its click and tick durations from the `ro.vendor.vibrator_hal.click_duration`
and `ro.vendor.vibrator_hal.tick_duration` entries of `properties` (defaults 10
and 5 ms). It offers `on`, `off`, `perform` (which returns the duration in
milliseconds), `set_amplitude`, `set_external_control`, `capabilities` and
`supported_effects`. `compose`, `always_on_enable`, `always_on_disable`,
`resonant_frequency` and `q_factor` raise `UnsupportedOperation`.

### USB Type-C

`exynostools.usb_roles` reads port state from a `UsbSysfs` location set:
`port_statuses`, `current_role`, `typec_port_names`, `can_switch_role` and
`apply_moisture_detection`. `Usb(sysfs, properties, port_type_timeout,
uevent_socket)` in `exynostools.usb` switches roles, toggles USB data and
reports results to a callback object with `notify_*` methods. While a callback
is set, a background thread listens for kernel uevents on a netlink socket
(Linux only) and passes them to `handle_uevent`; `stop()` or leaving a
`with Usb(...)` block ends it.

Both services can be pointed at a scratch directory instead of the real
`/sys` tree.

## What the package does not do

- The vibrator and USB services are library classes only: there is no command
  that starts them, and they are not registered with any system service
  manager.
- `mkdtbimg`, and `mkbootimg --dt_dir`, use the default `DtbhConfig` values
  (magic `DTBH`, version 2, platform `k3g`, subtype `k3g_eur_open`). Packing
  device trees for another target needs a `DtbhConfig` with that target's
  values, passed to `load_dtbh_block` from Python.
- It does not compile device tree sources; it only packs and unpacks compiled
  `.dtb` blobs.