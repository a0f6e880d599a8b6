# visualslam

Building blocks for feature-based visual SLAM, written with NumPy.

- `visualslam.frame`: the `KeyPoint` and `Frame` classes. A frame holds
  keypoints on a 64 x 48 search grid, together with their undistorted
  positions and their descriptors. Depth can come from an RGB-D depth map.
  A frame answers area queries and back-projects points that have depth.
  The module also has `undistort_points` and `compute_image_bounds`.
- `visualslam.epipolar`: two-view geometry. It provides point normalization,
  DLT homographies (`compute_h21`) and eight-point fundamental matrices
  (`compute_f21`). Both kinds of model can be scored with chi-square inlier
  tests. There is also linear triangulation, essential-matrix decomposition,
  and `check_rt`, which tests one relative pose against the matches.
- `visualslam.initializer`: `Initializer`, which runs RANSAC for a homography
  and for a fundamental matrix. It keeps the model with the better score and
  recovers the relative pose and the triangulated points as a `Reconstruction`.
- `visualslam.converter`: builds and splits 4x4 transforms, builds similarity
  matrices, converts a rotation to a quaternion `[x, y, z, w]`, and splits a
  descriptor matrix into rows.
- `visualslam.rgbd`: reads a TUM RGB-D association file.
- `visualslam.ar`: RANSAC plane detection among tracked map points, a `Plane`
  frame for placing virtual objects, the so(3) exponential map, and
  column-major matrices for OpenGL.

## Requirements

Python 3.10 or later and NumPy.

## Examples

### Frames

```python
import numpy as np
from visualslam.frame import Frame, KeyPoint

k = np.array([[500.0, 0.0, 320.0],
              [0.0, 500.0, 240.0],
              [0.0, 0.0, 1.0]])
keypoints = [KeyPoint(100.0, 120.0, 0), KeyPoint(300.5, 200.0, 1)]
descriptors = np.zeros((2, 32), dtype=np.uint8)

frame = Frame(keypoints, descriptors, 0.0, k, [0.0, 0.0, 0.0, 0.0],
              bf=40.0, th_depth=35.0, image_size=(640, 480), depth_map=depth)
frame.set_pose(np.eye(4))
nearby = frame.features_in_area(100.0, 120.0, 5.0)
world_point = frame.unproject_stereo(0)   # None when the keypoint has no depth
```

When the first distortion coefficient is zero, the keypoints are used as
they are. When it is not zero, the keypoints and the image bounds are
undistorted iteratively. `depth_map` is optional. Without it, every keypoint
has depth -1.

### Two-view initialization

```python
from visualslam.initializer import Initializer

initializer = Initializer(k, reference_points, 1.0, 200)
reconstruction = initializer.initialize(current_points, matches12)
if reconstruction is not None:
    r, t = reconstruction.rotation, reconstruction.translation
    points3d = reconstruction.points3d[reconstruction.triangulated]
```

Points may be `(x, y)` pairs or objects with `x` and `y` attributes.
`matches12[i]` is the index of the current point matched to reference point
`i`, or a negative value when there is none. At least 8 matches are needed;
with fewer, `ValueError` is raised. The minimal sets are drawn from a
generator seeded with 0, so results can be reproduced. The homography is
chosen when its share of the combined score is above 0.40. `None` is
returned in three cases: too few points are triangulated, the parallax is
too small, or no motion hypothesis clearly wins.

### Lower-level geometry

```python
from visualslam.epipolar import normalize, compute_h21, compute_f21, decompose_e, triangulate
from visualslam.converter import to_se3, split_se3, sim3_to_matrix, to_quaternion

tcw = to_se3(rotation, translation)
rotation, translation = split_se3(tcw)
qx, qy, qz, qw = to_quaternion(rotation)
r1, r2, t = decompose_e(essential)
```

### RGB-D sequences

```python
from visualslam.rgbd import load_tum_rgbd

rgb_files, depth_files, timestamps = load_tum_rgbd("associations.txt")
```

Each non-empty line must have the form `timestamp rgb_file timestamp depth_file`.

### Augmented-reality planes

```python
import random
from visualslam.ar import detect_plane, gl_matrix, status_message

plane = detect_plane(tcw, points, observations, 50, random.Random(0))
if plane is not None:
    model_view = plane.gl_tpw          # same as gl_matrix(plane.tpw)
    plane.recompute(updated_points)    # refit after the map has changed
```

Only points observed more than five times take part in the fit. If fewer
than 50 such points remain, no plane is returned. `status_message(status,
localization_mode)` gives the overlay text and its RGB colour for the
tracking states 1, 2 and 3.

## What the package does not do

The package does not extract features. Keypoints and descriptors must come
from elsewhere. It has no tracking loop, local mapping, loop closing or bundle
adjustment. It has no viewer and draws nothing on images. It provides no
command-line programs. Its only dataset reader is the RGB-D association-file
loader; it cannot read monocular or stereo image lists.

## Running the tests

Install the `test` extra, then run `pytest`.