"""
Blender-side half of the render bridge.

The generated script runs inside ``blender -b --python`` and serves one
command per stdin line until told to shut down:

    {"id": 1, "op": "load_model", "data_uri": "data:model/gltf-binary;base64,...", "digest": "..."}
    {"id": 2, "op": "render", "material": {...}, "angle": 30.0, "output": "/tmp/.../frame_2.png"}
    {"id": 3, "op": "shutdown"}

Every reply is one stdout line prefixed with ``BRIDGE_MARKER`` so it can be
told apart from Blender's own log output:

    @@SEQGEN@@ {"event": "ready", "blender": "4.2.0"}
    @@SEQGEN@@ {"id": 2, "ok": true, "path": "/tmp/.../frame_2.png"}
    @@SEQGEN@@ {"id": 2, "ok": false, "error": "RuntimeError: ..."}

Lighting recipe (storefront 360° viewer parity):
  - ambient + hemisphere world light (sky above, ground below)
  - key / fill / rim sun lamps, plus top and bottom lamps for metal highlights
  - Filmic view transform, exposure boosted to ``TONE_MAPPING_EXPOSURE``
  - every mesh material replaced by a principled metal from the preset, with
    a small emissive term so dark metals never render black
  - meshes named ``*gem*`` / ``*diamond*`` get a clear, partly transparent
    stone material instead
  - model centered on the origin and scaled so its largest side is
    ``FIT_SIZE`` before it is turned about the vertical axis
"""

from __future__ import annotations

import math

BRIDGE_MARKER = "@@SEQGEN@@ "

TONE_MAPPING_EXPOSURE = 1.8
EMISSIVE_STRENGTH = 0.08
FIT_SIZE = 2.0
CAMERA_FOV_DEGREES = 35.0
CAMERA_LOCATION = (0.0, -6.0, 1.2)
GEM_KEYWORDS = ("gem", "diamond")
GEM_ALPHA = 0.75

AMBIENT_INTENSITY = 0.4
HEMISPHERE_INTENSITY = 0.6
HEMISPHERE_SKY = (1.0, 1.0, 1.0)
HEMISPHERE_GROUND = (0.27, 0.27, 0.27)

# name, energy, location, color
LIGHT_RIG = [
    ("Key",    3.0, (5.0, -5.0, 8.0),  (1.0, 0.98, 0.95)),
    ("Fill",   1.5, (-6.0, -3.0, 4.0), (1.0, 1.0, 1.0)),
    ("Rim",    2.0, (0.0, 6.0, 5.0),   (1.0, 1.0, 1.0)),
    ("Top",    1.2, (0.0, 0.0, 10.0),  (1.0, 1.0, 1.0)),
    ("Bottom", 0.6, (0.0, 0.0, -10.0), (1.0, 1.0, 1.0)),
]


def _world_color(hemisphere: tuple[float, float, float]) -> tuple[float, float, float, float]:
    # Ambient is a flat white term on top of the hemisphere gradient
    r, g, b = (AMBIENT_INTENSITY + HEMISPHERE_INTENSITY * c for c in hemisphere)
    return (r, g, b, 1.0)


def build_bridge_script(work_dir: str, resolution: int = 1024) -> str:
    header = f'''
# ─── Configuration (generated) ───
BRIDGE_MARKER = {BRIDGE_MARKER!r}
WORK_DIR = {work_dir!r}
RESOLUTION = {int(resolution)}
EXPOSURE_EV = {math.log2(TONE_MAPPING_EXPOSURE)!r}
EMISSIVE_STRENGTH = {EMISSIVE_STRENGTH!r}
FIT_SIZE = {FIT_SIZE!r}
CAMERA_FOV = {math.radians(CAMERA_FOV_DEGREES)!r}
CAMERA_LOCATION = {CAMERA_LOCATION!r}
GEM_KEYWORDS = {GEM_KEYWORDS!r}
GEM_ALPHA = {GEM_ALPHA!r}
WORLD_SKY = {_world_color(HEMISPHERE_SKY)!r}
WORLD_GROUND = {_world_color(HEMISPHERE_GROUND)!r}
LIGHT_RIG = {LIGHT_RIG!r}
'''
    return header + _BRIDGE_BODY


_BRIDGE_BODY = r'''
import base64
import json
import math
import os
import sys
import traceback

import bpy
from mathutils import Vector

os.makedirs(WORK_DIR, exist_ok=True)
MODEL_PATH = os.path.join(WORK_DIR, "model.glb")
STATE = {"model_path": None, "digest": None}


def reply(payload):
    sys.stdout.write(BRIDGE_MARKER + json.dumps(payload) + "\n")
    sys.stdout.flush()


# ─── Scene disposal ───
def clear_scene():
    bpy.ops.object.select_all(action='SELECT')
    bpy.ops.object.delete(use_global=False)
    for c in list(bpy.data.collections):
        bpy.data.collections.remove(c)
    for m in list(bpy.data.meshes):
        bpy.data.meshes.remove(m)
    for mat in list(bpy.data.materials):
        bpy.data.materials.remove(mat)
    for img in list(bpy.data.images):
        bpy.data.images.remove(img)
    for light in list(bpy.data.lights):
        bpy.data.lights.remove(light)
    for cam in list(bpy.data.cameras):
        bpy.data.cameras.remove(cam)
    for w in list(bpy.data.worlds):
        bpy.data.worlds.remove(w)
    if hasattr(bpy.data, "orphans_purge"):
        bpy.data.orphans_purge(do_local_ids=True, do_linked_ids=True, do_recursive=True)


# ─── Model delivery ───
def decode_data_uri(uri):
    header, _, payload = uri.partition(",")
    if not header.startswith("data:") or ";base64" not in header:
        raise ValueError("model must arrive as a base64 data URI")
    return base64.b64decode(payload)


def op_load_model(cmd):
    data = decode_data_uri(cmd["data_uri"])
    with open(MODEL_PATH, "wb") as f:
        f.write(data)
    STATE["model_path"] = MODEL_PATH
    STATE["digest"] = cmd.get("digest")
    return {"bytes": len(data)}


def import_model():
    if not STATE["model_path"]:
        raise RuntimeError("no model loaded")
    bpy.ops.import_scene.gltf(filepath=STATE["model_path"])
    meshes = [obj for obj in bpy.data.objects if obj.type == 'MESH']
    if not meshes:
        raise RuntimeError("no mesh objects found in model")
    return meshes


def fit_model(meshes, angle_degrees):
    bpy.context.view_layer.update()
    all_min = Vector((float('inf'),) * 3)
    all_max = Vector((float('-inf'),) * 3)
    for obj in meshes:
        for corner in obj.bound_box:
            wc = obj.matrix_world @ Vector(corner)
            all_min.x = min(all_min.x, wc.x)
            all_min.y = min(all_min.y, wc.y)
            all_min.z = min(all_min.z, wc.z)
            all_max.x = max(all_max.x, wc.x)
            all_max.y = max(all_max.y, wc.y)
            all_max.z = max(all_max.z, wc.z)

    size = all_max - all_min
    center = (all_min + all_max) / 2
    max_dim = max(size.x, size.y, size.z)
    scale = FIT_SIZE / max_dim if max_dim > 0 else 1.0

    roots = [obj for obj in bpy.data.objects if obj.parent is None]
    pivot = bpy.data.objects.new("Pivot", None)
    bpy.context.collection.objects.link(pivot)
    for obj in roots:
        obj.location = obj.location - center
        obj.parent = pivot
    pivot.scale = (scale, scale, scale)
    pivot.rotation_euler = (0.0, 0.0, math.radians(angle_degrees))
    bpy.context.view_layer.update()


# ─── Materials ───
def set_input(node, names, value):
    for name in names:
        if name in node.inputs:
            node.inputs[name].default_value = value
            return


def new_principled(name):
    mat = bpy.data.materials.new(name=name)
    mat.use_nodes = True
    nodes = mat.node_tree.nodes
    links = mat.node_tree.links
    nodes.clear()
    out = nodes.new(type='ShaderNodeOutputMaterial')
    bsdf = nodes.new(type='ShaderNodeBsdfPrincipled')
    links.new(bsdf.outputs['BSDF'], out.inputs['Surface'])
    return mat, bsdf


def build_metal(material):
    r, g, b = material["base_color"]
    mat, bsdf = new_principled(material["name"])
    set_input(bsdf, ("Base Color",), (r, g, b, 1.0))
    set_input(bsdf, ("Metallic",), float(material["metallic"]))
    set_input(bsdf, ("Roughness",), float(material["roughness"]))
    set_input(bsdf, ("Emission Color", "Emission"), (r, g, b, 1.0))
    set_input(bsdf, ("Emission Strength",), EMISSIVE_STRENGTH)
    return mat


def build_gem():
    mat, bsdf = new_principled("gem")
    set_input(bsdf, ("Base Color",), (1.0, 1.0, 1.0, 1.0))
    set_input(bsdf, ("Metallic",), 0.0)
    set_input(bsdf, ("Roughness",), 0.0)
    set_input(bsdf, ("Alpha",), GEM_ALPHA)
    if hasattr(mat, "surface_render_method"):
        mat.surface_render_method = 'BLENDED'
    elif hasattr(mat, "blend_method"):
        mat.blend_method = 'BLEND'
    return mat


def is_gem(obj):
    names = (obj.name or "", getattr(obj.data, "name", "") or "")
    return any(k in n.lower() for n in names for k in GEM_KEYWORDS)


def apply_materials(meshes, material):
    metal = build_metal(material)
    gem = None
    for obj in meshes:
        target = metal
        if is_gem(obj):
            gem = gem or build_gem()
            target = gem
        obj.data.materials.clear()
        obj.data.materials.append(target)


# ─── World, lights, camera ───
def setup_world():
    world = bpy.data.worlds.new("SequenceWorld")
    bpy.context.scene.world = world
    world.use_nodes = True
    nodes = world.node_tree.nodes
    links = world.node_tree.links
    nodes.clear()

    coords = nodes.new(type='ShaderNodeTexCoord')
    split = nodes.new(type='ShaderNodeSeparateXYZ')
    remap = nodes.new(type='ShaderNodeMapRange')
    remap.inputs['From Min'].default_value = -1.0
    remap.inputs['From Max'].default_value = 1.0
    ramp = nodes.new(type='ShaderNodeValToRGB')
    ramp.color_ramp.elements[0].color = WORLD_GROUND
    ramp.color_ramp.elements[1].color = WORLD_SKY
    bg = nodes.new(type='ShaderNodeBackground')
    bg.inputs['Strength'].default_value = 1.0
    out = nodes.new(type='ShaderNodeOutputWorld')

    links.new(coords.outputs['Generated'], split.inputs['Vector'])
    links.new(split.outputs['Z'], remap.inputs['Value'])
    links.new(remap.outputs['Result'], ramp.inputs['Fac'])
    links.new(ramp.outputs['Color'], bg.inputs['Color'])
    links.new(bg.outputs['Background'], out.inputs['Surface'])


def add_sun(name, energy, location, color):
    light_data = bpy.data.lights.new(name=name, type='SUN')
    light_data.energy = energy
    light_data.color = color
    light_obj = bpy.data.objects.new(name=name, object_data=light_data)
    bpy.context.collection.objects.link(light_obj)
    light_obj.location = Vector(location)
    direction = Vector((0, 0, 0)) - Vector(location)
    light_obj.rotation_euler = direction.to_track_quat('-Z', 'Y').to_euler()
    return light_obj


def setup_lights():
    for name, energy, location, color in LIGHT_RIG:
        add_sun(name, energy, location, color)


def setup_camera():
    cam_data = bpy.data.cameras.new(name="SequenceCam")
    cam_data.type = 'PERSP'
    cam_data.lens_unit = 'FOV'
    cam_data.angle = CAMERA_FOV
    cam_data.clip_start = 0.1
    cam_data.clip_end = 100.0
    cam_obj = bpy.data.objects.new(name="SequenceCam", object_data=cam_data)
    bpy.context.collection.objects.link(cam_obj)
    cam_obj.location = Vector(CAMERA_LOCATION)
    direction = Vector((0, 0, 0)) - cam_obj.location
    cam_obj.rotation_euler = direction.to_track_quat('-Z', 'Y').to_euler()
    bpy.context.scene.camera = cam_obj


def setup_render():
    scene = bpy.context.scene
    engines = [e.identifier for e in bpy.types.RenderSettings.bl_rna.properties['engine'].enum_items]
    if 'BLENDER_EEVEE_NEXT' in engines:
        scene.render.engine = 'BLENDER_EEVEE_NEXT'
    elif 'BLENDER_EEVEE' in engines:
        scene.render.engine = 'BLENDER_EEVEE'

    scene.render.resolution_x = RESOLUTION
    scene.render.resolution_y = RESOLUTION
    scene.render.resolution_percentage = 100
    scene.render.film_transparent = True
    scene.render.image_settings.file_format = 'PNG'
    scene.render.image_settings.color_mode = 'RGBA'
    scene.render.image_settings.color_depth = '8'
    scene.render.image_settings.compression = 0

    scene.view_settings.view_transform = 'Filmic'
    scene.view_settings.exposure = EXPOSURE_EV
    scene.view_settings.gamma = 1.0
    scene.display_settings.display_device = 'sRGB'

    if hasattr(scene.eevee, 'taa_render_samples'):
        scene.eevee.taa_render_samples = 64


def op_render(cmd):
    clear_scene()
    meshes = import_model()
    fit_model(meshes, float(cmd.get("angle", 0.0)))
    apply_materials(meshes, cmd["material"])
    setup_world()
    setup_lights()
    setup_camera()
    setup_render()

    output = cmd["output"]
    bpy.context.scene.render.filepath = output
    bpy.ops.render.render(write_still=True)
    if not os.path.isfile(output):
        raise RuntimeError(f"render produced no file at {output}")
    return {"path": output, "bytes": os.path.getsize(output)}


HANDLERS = {
    "load_model": op_load_model,
    "render": op_render,
}


def main():
    reply({"event": "ready", "blender": bpy.app.version_string})
    while True:
        line = sys.stdin.readline()
        if not line:
            break
        line = line.strip()
        if not line:
            continue
        try:
            cmd = json.loads(line)
        except ValueError as exc:
            reply({"id": None, "ok": False, "error": f"bad command: {exc}"})
            continue

        op = cmd.get("op")
        if op == "shutdown":
            reply({"id": cmd.get("id"), "ok": True})
            break

        handler = HANDLERS.get(op)
        if handler is None:
            reply({"id": cmd.get("id"), "ok": False, "error": f"unknown op: {op}"})
            continue
        try:
            result = handler(cmd)
        except Exception as exc:
            traceback.print_exc()
            reply({"id": cmd.get("id"), "ok": False, "error": f"{type(exc).__name__}: {exc}"})
            continue
        reply({"id": cmd.get("id"), "ok": True, **result})


main()
'''
