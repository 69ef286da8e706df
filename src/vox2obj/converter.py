"""
Conversion Pipeline

Orchestrates the full .vox -> .obj conversion of a batch of files:

1. Read the models of a file
2. Per submodel: surface filter, exterior classification, boxy mesh build,
   weld, transform into scene space
3. Append the submodel meshes into one scene mesh
4. Serialize to {name}_converted.obj in the output directory

Failures are scoped: a bad submodel is skipped and recorded, a bad file
yields a failed ConversionResult, and the batch always runs to the end.

Example Usage:
    options = ConvertingOptions(["castle.vox"], "out/")
    results = VoxModelConverter(options).convert_all()
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union
import logging
import threading
import time

from .builder import BoxyMeshBuilder
from .config import ConvertingOptions
from .errors import ConversionError, GeometryError, InputError, OutputError
from .exporters import OBJExporter, read_vox
from .exterior import ExternalSpaceClassifier
from .mesh import Mesh
from .models import Model
from .presence import SurfaceVoxelFilter
from .quads import QuadMerger
from .transform import SubModelTransform, apply_transform, compose_meshes
from .welder import MeshWelder

logger = logging.getLogger(__name__)


ModelLoader = Callable[[Union[str, Path]], List[Model]]


@dataclass
class ConversionJob:
    """Work item for one input file."""
    input_path: Path
    output_path: Path
    models: List[Model] = field(default_factory=list)
    mesh: Optional[Mesh] = None


@dataclass
class ConversionResult:
    """
    Outcome of converting one file.

    Attributes:
        input_path: Source file
        success: True when the OBJ was written
        output_path: Written file (None on failure)
        reason: Error message on failure or skip
        vertex_count: Vertices in the written mesh
        face_count: Faces (quads + triangles) in the written mesh
        converted_models: Submodels that made it into the mesh
        skipped_models: Names of submodels that failed and were left out
        cancelled: The batch was cancelled before this file started
        elapsed: Seconds spent on the file
    """
    input_path: Path
    success: bool
    output_path: Optional[Path] = None
    reason: Optional[str] = None
    vertex_count: int = 0
    face_count: int = 0
    converted_models: int = 0
    skipped_models: List[str] = field(default_factory=list)
    cancelled: bool = False
    elapsed: float = 0.0

    @property
    def status(self) -> str:
        if self.cancelled:
            return "skipped"
        return "ok" if self.success else "failed"


class VoxModelConverter:
    """
    Batch converter from .vox scenes to OBJ meshes.

    Attributes:
        options: Conversion options shared by every file
        surface_filter: Drops interior voxels
        builder: Boxy mesh builder (owns the exterior classifier)
        welder: Mesh cleanup
        exporter: OBJ serializer (owns the quad merger)
    """

    def __init__(
        self,
        options: ConvertingOptions,
        model_loader: ModelLoader = read_vox
    ):
        """
        Initialize the converter.

        Args:
            options: Conversion options
            model_loader: Reads the models of one input file
        """
        self.options = options
        self.model_loader = model_loader

        self.surface_filter = SurfaceVoxelFilter()
        self.builder = BoxyMeshBuilder(
            merge_coplanar_faces=options.merge_coplanar_faces,
            classifier=ExternalSpaceClassifier(options.occupancy),
        )
        self.welder = MeshWelder(
            merge_epsilon=options.weld_epsilon,
            normal_weighting=options.normal_weighting,
        )
        self.exporter = OBJExporter(
            mesh_type=options.mesh_type,
            include_normals=options.include_normals,
            merger=QuadMerger(
                right_angle_tolerance=options.right_angle_tolerance,
                coplanar_tolerance=options.coplanar_tolerance,
            ),
        )

    def mesh_model(self, model: Model) -> Mesh:
        """
        Build the welded, scene-space mesh of one submodel.

        Raises:
            InputError: If the model has no voxels or voxels outside its size
            GeometryError: If the mesh or the model transform is degenerate
        """
        if model.voxel_count == 0:
            raise InputError(f"Model {model.name} has no voxels")

        surface = self.surface_filter.filter(model)
        coords = surface[:, :3]

        external = self.builder.classifier.classify(coords)
        mesh = self.builder.build(coords, external)
        if mesh.triangle_count == 0:
            raise GeometryError(f"Model {model.name} produced no faces")

        report = self.welder.weld(mesh)
        if report.boundary_edges and self.options.merge_coplanar_faces:
            # T-junctions where merged rectangles of different extents meet
            logger.info(
                "Model %s: %d open edges from coplanar face merging (use --no-greedy for a closed mesh)",
                model.name, report.boundary_edges
            )
        apply_transform(mesh, SubModelTransform.from_model(model, self.options.correct_up_axis))

        logger.debug(
            "Model %s: %d voxels -> %d surface -> %r",
            model.name, model.voxel_count, len(surface), mesh
        )
        return mesh

    def combine_models(self, models: List[Model]) -> Tuple[Mesh, List[str]]:
        """
        Mesh every submodel and append them into one mesh.

        Returns:
            (combined mesh, names of skipped submodels)

        Raises:
            InputError: If no submodel could be converted
        """
        meshes = []
        skipped = []

        for model in models:
            try:
                meshes.append(self.mesh_model(model))
            except (InputError, GeometryError) as e:
                logger.warning("Skipping submodel %s: %s", model.name, e)
                skipped.append(model.name)

        if not meshes:
            raise InputError(f"No convertible submodels ({len(skipped)} skipped)")

        return compose_meshes(meshes), skipped

    def convert_file(self, input_path: Union[str, Path]) -> ConversionResult:
        """
        Convert one file. Never raises for conversion failures.

        Args:
            input_path: Source .vox file

        Returns:
            ConversionResult describing the outcome
        """
        start_time = time.time()
        job = ConversionJob(
            input_path=Path(input_path),
            output_path=self.options.output_path_for(input_path),
        )
        result = ConversionResult(input_path=job.input_path, success=False)

        try:
            job.models = self.model_loader(job.input_path)
            job.mesh, result.skipped_models = self.combine_models(job.models)
            result.converted_models = len(job.models) - len(result.skipped_models)

            try:
                job.output_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise OutputError(f"Cannot create {job.output_path.parent}: {e}") from e

            result.face_count = self.exporter.export(job.mesh, job.output_path)
            result.vertex_count = job.mesh.vertex_count
            result.output_path = job.output_path
            result.success = True

        except ConversionError as e:
            result.reason = str(e)
            logger.error("Failed to convert %s: %s", job.input_path, e)

        result.elapsed = time.time() - start_time
        if result.success:
            logger.info(
                "Converted %s -> %s (%d vertices, %d faces, %d submodels skipped)",
                job.input_path, job.output_path, result.vertex_count,
                result.face_count, len(result.skipped_models)
            )
        return result

    def convert_all(
        self,
        cancel_event: Optional[threading.Event] = None
    ) -> List[ConversionResult]:
        """
        Convert every input file of the options.

        Files run sequentially unless `options.max_workers > 1`, in which case
        each file is an independent job on a thread pool.
        When several inputs map to the same output file, only the first is
        converted and the rest fail.

        Args:
            cancel_event: When set, files not yet started are reported as skipped

        Returns:
            One result per input file, in input order
        """
        paths = self.options.input_paths

        # The first input mapping to an output file owns it
        owners = {}
        for index, path in enumerate(paths):
            owners.setdefault(self.options.output_path_for(path), index)

        def run(index: int, path: Path) -> ConversionResult:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Skipping %s: batch cancelled", path)
                return ConversionResult(
                    input_path=path, success=False,
                    reason="batch cancelled", cancelled=True
                )

            output_path = self.options.output_path_for(path)
            owner = owners[output_path]
            if owner != index:
                reason = f"Output {output_path} is already written for {paths[owner]}"
                logger.error("Failed to convert %s: %s", path, reason)
                return ConversionResult(input_path=path, success=False, reason=reason)

            return self.convert_file(path)

        if self.options.max_workers > 1 and len(paths) > 1:
            with ThreadPoolExecutor(max_workers=self.options.max_workers) as pool:
                results = list(pool.map(run, range(len(paths)), paths))
        else:
            results = [run(index, path) for index, path in enumerate(paths)]

        failed = sum(1 for r in results if r.status == "failed")
        logger.info(
            "Batch finished: %d converted, %d failed, %d skipped",
            sum(1 for r in results if r.success), failed,
            sum(1 for r in results if r.cancelled)
        )
        return results
